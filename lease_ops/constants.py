DEFAULT_ROLES = [
    ("TENANT", "Tenant portal access"),
    ("OWNER", "Property owner managing their own leases"),
    ("ADMIN", "Platform administrator with full access"),
]

# Higher number means more privileges
ROLE_PRIORITY = {
    "TENANT": 10,
    "OWNER": 50,
    "ADMIN": 100,
}

LEASE_STATUS_ACTIVE = "active"

INVOICE_STATUS_PAID = "paid"

PRINCIPAL_TENANT_ROLE = "locataire_principal"

RECONCILIATION_STATUS_CALCULATED = "calculated"

# Number of billing periods per year for each charge periodicity.
PERIODICITY_MULTIPLIERS = {
    "monthly": 12,
    "quarterly": 4,
    "yearly": 1,
}

# Reminder escalation thresholds, in days past the due date.
REMINDER_LEVEL_AMIABLE = "amiable"
REMINDER_LEVEL_FORMELLE = "formelle"
REMINDER_LEVEL_MISE_EN_DEMEURE = "mise_en_demeure"

DELINQUENCY_THRESHOLD_DAYS = 5
REMINDER_SCHEDULE = [
    (DELINQUENCY_THRESHOLD_DAYS, REMINDER_LEVEL_AMIABLE),
    (15, REMINDER_LEVEL_FORMELLE),
    (30, REMINDER_LEVEL_MISE_EN_DEMEURE),
]

UNKNOWN_TENANT_NAME = "Locataire"
UNKNOWN_PROPERTY_ADDRESS = "Adresse inconnue"

# Compliance window quoted in formal reminders and notices of default.
PAYMENT_GRACE_DAYS = 8

EVENT_CHARGE_RECONCILED = "Charge.Reconciled"

OUTBOX_STATUS_PENDING = "pending"
OUTBOX_STATUS_PROCESSING = "processing"
OUTBOX_STATUS_COMPLETED = "completed"
OUTBOX_STATUS_FAILED = "failed"
