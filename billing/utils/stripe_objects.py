"""Чтение объектов Stripe как обычных словарей"""
from collections.abc import Mapping
from typing import Any


def as_dict(resource: Any) -> Mapping:
    """
    Тело объекта Stripe как словарь

    StripeObject в новых версиях SDK не является Mapping,
    поэтому сначала пробуем to_dict().
    """
    if resource is None:
        return {}
    to_dict = getattr(resource, "to_dict", None)
    if callable(to_dict):
        return to_dict()
    if isinstance(resource, Mapping):
        return resource
    return {}
