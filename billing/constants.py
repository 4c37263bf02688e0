from datetime import timezone, timedelta

# Время Сан-Паулу (UTC-3), используется в txid
SAO_PAULO_TZ = timezone(timedelta(hours=-3))

# Поля BR Code (EMV "copia e cola")
PIX_GUI = "br.gov.bcb.pix"
PIX_FORMAT_INDICATOR = "01"
PIX_POI_STATIC = "11"
PIX_POI_DYNAMIC = "12"
PIX_MCC = "0000"
PIX_CURRENCY_BRL = "986"
PIX_COUNTRY = "BR"
PIX_STATIC_TXID = "***"
PIX_DESCRIPTION = "ASSINATURA"
PIX_CRC_TAG = "6304"

# Лимиты полей
MERCHANT_NAME_MAX = 25
MERCHANT_CITY_MAX = 15
DESCRIPTION_MAX = 25
TXID_MAX_LENGTH = 35
TXID_RANDOM_BOUND = 36_000_000

# Длительность оплаченного периода PIX-подписки (в месяцах)
BILLING_PERIOD_MONTHS = 1

# Повторы при конфликте версий
CONFLICT_RETRIES = 3

# Ожидание client_secret у Stripe
RECONCILE_BACKOFF_STEP_SECONDS = 0.25
RECONCILE_BACKOFF_CAP_SECONDS = 2.0
RECONCILE_INTENT_LIST_LIMIT = 10

# Интервалы фоновых задач по умолчанию
PAYMENT_EXPIRY_INTERVAL_SECONDS = 300  # 5 минут
SUBSCRIPTION_SWEEP_INTERVAL_SECONDS = 300  # 5 минут
