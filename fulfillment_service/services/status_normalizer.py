"""
Payment Status Normalizer
One total mapping per provider into the canonical payment status.
Unknown input maps to PENDING; nothing here raises.
"""

PENDING = "PENDING"
PROCESSING = "PROCESSING"
COMPLETED = "COMPLETED"
FAILED = "FAILED"
CANCELLED = "CANCELLED"
REFUNDED = "REFUNDED"

CANONICAL_STATUSES = (PENDING, PROCESSING, COMPLETED, FAILED, CANCELLED, REFUNDED)

WOMPI_STATUSES = {
    "APPROVED": COMPLETED,
    "PENDING":  PENDING,
    "DECLINED": FAILED,
    "ERROR":    FAILED,
    "VOIDED":   CANCELLED,
}

# x_cod_response
EPAYCO_STATUSES = {
    "1":  COMPLETED,   # Aceptada
    "2":  FAILED,      # Rechazada
    "3":  PENDING,     # Pendiente
    "4":  FAILED,      # Fallida
    "6":  REFUNDED,    # Reversada
    "7":  PROCESSING,  # Retenida
    "8":  PENDING,     # Iniciada
    "9":  CANCELLED,   # Expirada
    "10": FAILED,      # Abandonada
    "11": CANCELLED,   # Cancelada
    "12": FAILED,      # Antifraude
}

NEQUI_STATUSES = {
    "35": COMPLETED,
    "36": PENDING,
    "37": FAILED,
    "38": CANCELLED,  # expired
    "39": CANCELLED,
}

PAYPAL_STATUSES = {
    "CREATED":               PENDING,
    "SAVED":                 PENDING,
    "PAYER_ACTION_REQUIRED": PENDING,
    "PENDING":               PENDING,
    "APPROVED":              PROCESSING,  # approved by payer, not captured yet
    "COMPLETED":             COMPLETED,
    "PARTIALLY_REFUNDED":    COMPLETED,
    "DECLINED":              FAILED,
    "DENIED":                FAILED,
    "FAILED":                FAILED,
    "VOIDED":                CANCELLED,
    "REFUNDED":              REFUNDED,
}

STRIPE_STATUSES = {
    "succeeded":               COMPLETED,
    "paid":                    COMPLETED,
    "no_payment_required":     COMPLETED,
    "processing":              PROCESSING,
    "requires_payment_method": PENDING,
    "requires_confirmation":   PENDING,
    "requires_action":         PENDING,
    "requires_capture":        PROCESSING,
    "unpaid":                  PENDING,
    "open":                    PENDING,
    "payment_failed":          FAILED,
    "failed":                  FAILED,
    "canceled":                CANCELLED,
    "expired":                 CANCELLED,
    "refunded":                REFUNDED,
}


def _lookup(table, value, fold):
    if value is None:
        return PENDING
    key = str(value).strip()
    key = key.upper() if fold == "upper" else key.lower() if fold == "lower" else key
    return table.get(key, PENDING)


def normalize_wompi(status):
    return _lookup(WOMPI_STATUSES, status, "upper")


def normalize_epayco(status):
    return _lookup(EPAYCO_STATUSES, status, None)


def normalize_nequi(status):
    return _lookup(NEQUI_STATUSES, status, None)


def normalize_paypal(status):
    return _lookup(PAYPAL_STATUSES, status, "upper")


def normalize_stripe(status):
    return _lookup(STRIPE_STATUSES, status, "lower")


NORMALIZERS = {
    "wompi":  normalize_wompi,
    "epayco": normalize_epayco,
    "nequi":  normalize_nequi,
    "paypal": normalize_paypal,
    "stripe": normalize_stripe,
}


def normalize(provider, status):
    normalizer = NORMALIZERS.get(provider)
    if normalizer is None:
        return PENDING
    return normalizer(status)
