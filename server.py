#!/usr/bin/env python3
"""
PIX & Stripe Billing Service - Entry Point
Точка входа: python server.py
"""

from billing.main import main
import asyncio

if __name__ == "__main__":
    asyncio.run(main())
