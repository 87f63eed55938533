SCHEMA_VERSION = "invoice_record_v1"
INVOICE_TYPE = "invoice_statement"
