from tortoise import BaseDBAsyncClient


async def upgrade(db: BaseDBAsyncClient) -> str:
    return """
        CREATE TABLE IF NOT EXISTS "organization" (
    "id" UUID NOT NULL PRIMARY KEY,
    "created_at" TIMESTAMPTZ NOT NULL DEFAULT CURRENT_TIMESTAMP,
    "updated_at" TIMESTAMPTZ NOT NULL DEFAULT CURRENT_TIMESTAMP,
    "name" VARCHAR(255) NOT NULL UNIQUE
);
COMMENT ON TABLE "organization" IS 'A landlord or property manager that owns leases.';
CREATE TABLE IF NOT EXISTS "chargetype" (
    "id" UUID NOT NULL PRIMARY KEY,
    "created_at" TIMESTAMPTZ NOT NULL DEFAULT CURRENT_TIMESTAMP,
    "updated_at" TIMESTAMPTZ NOT NULL DEFAULT CURRENT_TIMESTAMP,
    "code" VARCHAR(30) NOT NULL,
    "name" VARCHAR(100) NOT NULL,
    "is_taxable" BOOL NOT NULL DEFAULT False,
    "default_tax_rate" DECIMAL(5,2) NOT NULL DEFAULT 0,
    "is_system" BOOL NOT NULL DEFAULT False,
    "is_active" BOOL NOT NULL DEFAULT True,
    "organization_id" UUID REFERENCES "organization" ("id") ON DELETE CASCADE,
    CONSTRAINT "uid_chargetype_organiz_5f0c2e" UNIQUE ("organization_id", "code")
);
COMMENT ON TABLE "chargetype" IS 'Reference data describing what a line bills for and how it is taxed.';
CREATE TABLE IF NOT EXISTS "lease" (
    "id" UUID NOT NULL PRIMARY KEY,
    "created_at" TIMESTAMPTZ NOT NULL DEFAULT CURRENT_TIMESTAMP,
    "updated_at" TIMESTAMPTZ NOT NULL DEFAULT CURRENT_TIMESTAMP,
    "lease_number" VARCHAR(50) NOT NULL,
    "status" VARCHAR(10) NOT NULL DEFAULT 'draft',
    "start_date" DATE NOT NULL,
    "end_date" DATE,
    "organization_id" UUID NOT NULL REFERENCES "organization" ("id") ON DELETE CASCADE
);
COMMENT ON COLUMN "lease"."status" IS 'DRAFT: draft\nACTIVE: active\nENDED: ended\nTERMINATED: terminated';
COMMENT ON TABLE "lease" IS 'A tenancy agreement. Managed elsewhere; billed here.';
CREATE TABLE IF NOT EXISTS "leasebillingsetting" (
    "id" UUID NOT NULL PRIMARY KEY,
    "created_at" TIMESTAMPTZ NOT NULL DEFAULT CURRENT_TIMESTAMP,
    "updated_at" TIMESTAMPTZ NOT NULL DEFAULT CURRENT_TIMESTAMP,
    "billing_day" SMALLINT NOT NULL DEFAULT 1,
    "payment_term_days" SMALLINT NOT NULL DEFAULT 0,
    "proration_method" VARCHAR(20) NOT NULL DEFAULT 'actual_days_in_month',
    "rent_timing" VARCHAR(7) NOT NULL DEFAULT 'advance',
    "invoice_prefix" VARCHAR(20),
    "generate_automatically" BOOL NOT NULL DEFAULT True,
    "payment_instructions" TEXT,
    "lease_id" UUID NOT NULL UNIQUE REFERENCES "lease" ("id") ON DELETE CASCADE
);
COMMENT ON COLUMN "leasebillingsetting"."proration_method" IS 'ACTUAL_DAYS_IN_MONTH: actual_days_in_month\nTHIRTY_DAY_MONTH: thirty_day_month';
COMMENT ON COLUMN "leasebillingsetting"."rent_timing" IS 'ADVANCE: advance\nARREARS: arrears';
COMMENT ON TABLE "leasebillingsetting" IS 'Per-lease billing configuration.';
CREATE TABLE IF NOT EXISTS "recurringcharge" (
    "id" UUID NOT NULL PRIMARY KEY,
    "created_at" TIMESTAMPTZ NOT NULL DEFAULT CURRENT_TIMESTAMP,
    "updated_at" TIMESTAMPTZ NOT NULL DEFAULT CURRENT_TIMESTAMP,
    "amount" DECIMAL(14,2) NOT NULL,
    "frequency" VARCHAR(9) NOT NULL DEFAULT 'monthly',
    "start_date" DATE NOT NULL,
    "end_date" DATE,
    "description" VARCHAR(255),
    "is_active" BOOL NOT NULL DEFAULT True,
    "is_deleted" BOOL NOT NULL DEFAULT False,
    "charge_type_id" UUID NOT NULL REFERENCES "chargetype" ("id") ON DELETE CASCADE,
    "lease_id" UUID NOT NULL REFERENCES "lease" ("id") ON DELETE CASCADE
);
COMMENT ON COLUMN "recurringcharge"."frequency" IS 'ONE_TIME: one_time\nMONTHLY: monthly\nQUARTERLY: quarterly\nYEARLY: yearly';
COMMENT ON COLUMN "recurringcharge"."end_date" IS 'Exclusive; null is open-ended';
COMMENT ON TABLE "recurringcharge" IS 'A charge billed on a lease over ``[start_date, end_date)``.';
CREATE TABLE IF NOT EXISTS "utilityrateplan" (
    "id" UUID NOT NULL PRIMARY KEY,
    "created_at" TIMESTAMPTZ NOT NULL DEFAULT CURRENT_TIMESTAMP,
    "updated_at" TIMESTAMPTZ NOT NULL DEFAULT CURRENT_TIMESTAMP,
    "name" VARCHAR(100) NOT NULL,
    "utility_type" VARCHAR(11) NOT NULL DEFAULT 'electricity',
    "is_active" BOOL NOT NULL DEFAULT True,
    "organization_id" UUID NOT NULL REFERENCES "organization" ("id") ON DELETE CASCADE
);
COMMENT ON COLUMN "utilityrateplan"."utility_type" IS 'ELECTRICITY: electricity\nWATER: water\nGAS: gas';
COMMENT ON TABLE "utilityrateplan" IS 'A set of consumption slabs for one utility.';
CREATE TABLE IF NOT EXISTS "utilityrateslab" (
    "id" UUID NOT NULL PRIMARY KEY,
    "created_at" TIMESTAMPTZ NOT NULL DEFAULT CURRENT_TIMESTAMP,
    "updated_at" TIMESTAMPTZ NOT NULL DEFAULT CURRENT_TIMESTAMP,
    "lower_bound" DECIMAL(14,3) NOT NULL,
    "upper_bound" DECIMAL(14,3),
    "rate_per_unit" DECIMAL(12,4) NOT NULL,
    "fixed_charge" DECIMAL(14,2) NOT NULL DEFAULT 0,
    "rate_plan_id" UUID NOT NULL REFERENCES "utilityrateplan" ("id") ON DELETE CASCADE
);
COMMENT ON COLUMN "utilityrateslab"."upper_bound" IS 'Null absorbs the rest';
COMMENT ON COLUMN "utilityrateslab"."fixed_charge" IS 'Flat amount added when consumption reaches the slab';
COMMENT ON TABLE "utilityrateslab" IS 'Consumption range ``[lower_bound, upper_bound)`` billed at one rate.';
CREATE TABLE IF NOT EXISTS "utilitystatement" (
    "id" UUID NOT NULL PRIMARY KEY,
    "created_at" TIMESTAMPTZ NOT NULL DEFAULT CURRENT_TIMESTAMP,
    "updated_at" TIMESTAMPTZ NOT NULL DEFAULT CURRENT_TIMESTAMP,
    "utility_type" VARCHAR(11) NOT NULL,
    "billing_period_start" DATE NOT NULL,
    "billing_period_end" DATE NOT NULL,
    "is_meter_based" BOOL NOT NULL DEFAULT True,
    "previous_reading" DECIMAL(14,3),
    "current_reading" DECIMAL(14,3),
    "direct_bill_amount" DECIMAL(14,2),
    "units_consumed" DECIMAL(14,3),
    "calculated_amount" DECIMAL(14,2) NOT NULL DEFAULT 0,
    "total_amount" DECIMAL(14,2) NOT NULL DEFAULT 0,
    "version" INT NOT NULL DEFAULT 1,
    "is_final" BOOL NOT NULL DEFAULT False,
    "finalized_at" TIMESTAMPTZ,
    "invoice_line_id" UUID,
    "notes" TEXT,
    "row_version" INT NOT NULL DEFAULT 1,
    "lease_id" UUID NOT NULL REFERENCES "lease" ("id") ON DELETE CASCADE,
    "rate_plan_id" UUID REFERENCES "utilityrateplan" ("id") ON DELETE CASCADE,
    CONSTRAINT "uid_utilitystat_lease_i_8e3b71" UNIQUE ("lease_id", "utility_type", "billing_period_start", "billing_period_end", "version")
);
COMMENT ON COLUMN "utilitystatement"."utility_type" IS 'ELECTRICITY: electricity\nWATER: water\nGAS: gas';
COMMENT ON COLUMN "utilitystatement"."invoice_line_id" IS 'Lookup key of the line that billed this statement';
COMMENT ON TABLE "utilitystatement" IS 'A utility bill for one lease and period.';
CREATE TABLE IF NOT EXISTS "invoice" (
    "id" UUID NOT NULL PRIMARY KEY,
    "created_at" TIMESTAMPTZ NOT NULL DEFAULT CURRENT_TIMESTAMP,
    "updated_at" TIMESTAMPTZ NOT NULL DEFAULT CURRENT_TIMESTAMP,
    "status" VARCHAR(14) NOT NULL DEFAULT 'draft',
    "invoice_number" VARCHAR(40),
    "invoice_date" DATE NOT NULL,
    "due_date" DATE NOT NULL,
    "billing_period_start" DATE NOT NULL,
    "billing_period_end" DATE NOT NULL,
    "sub_total" DECIMAL(14,2) NOT NULL DEFAULT 0,
    "tax_amount" DECIMAL(14,2) NOT NULL DEFAULT 0,
    "total_amount" DECIMAL(14,2) NOT NULL DEFAULT 0,
    "paid_amount" DECIMAL(14,2) NOT NULL DEFAULT 0,
    "issued_at" TIMESTAMPTZ,
    "paid_at" TIMESTAMPTZ,
    "voided_at" TIMESTAMPTZ,
    "void_reason" VARCHAR(500),
    "written_off_at" TIMESTAMPTZ,
    "write_off_reason" VARCHAR(500),
    "payment_instructions" TEXT,
    "notes" TEXT,
    "row_version" INT NOT NULL DEFAULT 1,
    "lease_id" UUID NOT NULL REFERENCES "lease" ("id") ON DELETE CASCADE,
    "organization_id" UUID NOT NULL REFERENCES "organization" ("id") ON DELETE CASCADE,
    CONSTRAINT "uid_invoice_organiz_3d7c41" UNIQUE ("organization_id", "invoice_number")
);
COMMENT ON COLUMN "invoice"."status" IS 'DRAFT: draft\nISSUED: issued\nPARTIALLY_PAID: partially_paid\nPAID: paid\nOVERDUE: overdue\nCANCELLED: cancelled\nWRITTEN_OFF: written_off';
COMMENT ON TABLE "invoice" IS 'A bill for a lease and billing period.';
CREATE TABLE IF NOT EXISTS "invoiceline" (
    "id" UUID NOT NULL PRIMARY KEY,
    "created_at" TIMESTAMPTZ NOT NULL DEFAULT CURRENT_TIMESTAMP,
    "updated_at" TIMESTAMPTZ NOT NULL DEFAULT CURRENT_TIMESTAMP,
    "line_number" INT NOT NULL,
    "description" VARCHAR(255) NOT NULL,
    "quantity" DECIMAL(14,3) NOT NULL DEFAULT 1,
    "unit_price" DECIMAL(14,4) NOT NULL,
    "amount" DECIMAL(14,2) NOT NULL,
    "tax_rate" DECIMAL(5,2) NOT NULL DEFAULT 0,
    "tax_amount" DECIMAL(14,2) NOT NULL DEFAULT 0,
    "total_amount" DECIMAL(14,2) NOT NULL,
    "source" VARCHAR(11) NOT NULL,
    "source_ref_id" UUID,
    "period_start" DATE,
    "period_end" DATE,
    "charge_type_id" UUID NOT NULL REFERENCES "chargetype" ("id") ON DELETE CASCADE,
    "invoice_id" UUID NOT NULL REFERENCES "invoice" ("id") ON DELETE CASCADE
);
COMMENT ON COLUMN "invoiceline"."source" IS 'RENT: rent\nMAINTENANCE: maintenance\nUTILITY: utility\nMANUAL: manual';
COMMENT ON COLUMN "invoiceline"."source_ref_id" IS 'RecurringCharge or UtilityStatement that produced it';
COMMENT ON TABLE "invoiceline" IS 'One billed item of an invoice.';
CREATE TABLE IF NOT EXISTS "creditnote" (
    "id" UUID NOT NULL PRIMARY KEY,
    "created_at" TIMESTAMPTZ NOT NULL DEFAULT CURRENT_TIMESTAMP,
    "updated_at" TIMESTAMPTZ NOT NULL DEFAULT CURRENT_TIMESTAMP,
    "credit_note_number" VARCHAR(40) NOT NULL,
    "credit_note_date" DATE NOT NULL,
    "reason" VARCHAR(13) NOT NULL,
    "notes" TEXT,
    "total_amount" DECIMAL(14,2) NOT NULL,
    "applied_at" TIMESTAMPTZ,
    "row_version" INT NOT NULL DEFAULT 1,
    "invoice_id" UUID NOT NULL REFERENCES "invoice" ("id") ON DELETE CASCADE,
    "organization_id" UUID NOT NULL REFERENCES "organization" ("id") ON DELETE CASCADE,
    CONSTRAINT "uid_creditnote_organiz_9a52e0" UNIQUE ("organization_id", "credit_note_number")
);
COMMENT ON COLUMN "creditnote"."reason" IS 'INVOICE_ERROR: invoice_error\nDISCOUNT: discount\nREFUND: refund\nGOODWILL: goodwill\nADJUSTMENT: adjustment\nOTHER: other';
COMMENT ON COLUMN "creditnote"."applied_at" IS 'Null while unapplied';
COMMENT ON TABLE "creditnote" IS 'A ledger entry reducing an invoice''s balance without touching it.';
CREATE TABLE IF NOT EXISTS "creditnoteline" (
    "id" UUID NOT NULL PRIMARY KEY,
    "created_at" TIMESTAMPTZ NOT NULL DEFAULT CURRENT_TIMESTAMP,
    "updated_at" TIMESTAMPTZ NOT NULL DEFAULT CURRENT_TIMESTAMP,
    "line_number" INT NOT NULL,
    "description" VARCHAR(255) NOT NULL,
    "amount" DECIMAL(14,2) NOT NULL,
    "tax_amount" DECIMAL(14,2) NOT NULL DEFAULT 0,
    "total_amount" DECIMAL(14,2) NOT NULL,
    "notes" VARCHAR(255),
    "credit_note_id" UUID NOT NULL REFERENCES "creditnote" ("id") ON DELETE CASCADE,
    "invoice_line_id" UUID NOT NULL REFERENCES "invoiceline" ("id") ON DELETE CASCADE
);
COMMENT ON TABLE "creditnoteline" IS 'Credited portion of one invoice line.';
CREATE TABLE IF NOT EXISTS "invoicerun" (
    "id" UUID NOT NULL PRIMARY KEY,
    "created_at" TIMESTAMPTZ NOT NULL DEFAULT CURRENT_TIMESTAMP,
    "updated_at" TIMESTAMPTZ NOT NULL DEFAULT CURRENT_TIMESTAMP,
    "run_number" VARCHAR(40) NOT NULL UNIQUE,
    "billing_period_start" DATE NOT NULL,
    "billing_period_end" DATE NOT NULL,
    "status" VARCHAR(21) NOT NULL DEFAULT 'pending',
    "started_at" TIMESTAMPTZ,
    "completed_at" TIMESTAMPTZ,
    "total_leases" INT NOT NULL DEFAULT 0,
    "success_count" INT NOT NULL DEFAULT 0,
    "failure_count" INT NOT NULL DEFAULT 0,
    "error_message" TEXT,
    "organization_id" UUID NOT NULL REFERENCES "organization" ("id") ON DELETE CASCADE
);
COMMENT ON COLUMN "invoicerun"."status" IS 'PENDING: pending\nIN_PROGRESS: in_progress\nCOMPLETED: completed\nCOMPLETED_WITH_ERRORS: completed_with_errors\nFAILED: failed\nCANCELLED: cancelled';
COMMENT ON TABLE "invoicerun" IS 'A batch generation of invoices for one organization and period.';
CREATE TABLE IF NOT EXISTS "invoicerunitem" (
    "id" UUID NOT NULL PRIMARY KEY,
    "created_at" TIMESTAMPTZ NOT NULL DEFAULT CURRENT_TIMESTAMP,
    "updated_at" TIMESTAMPTZ NOT NULL DEFAULT CURRENT_TIMESTAMP,
    "is_success" BOOL NOT NULL,
    "error_message" TEXT,
    "processed_at" TIMESTAMPTZ NOT NULL,
    "invoice_id" UUID REFERENCES "invoice" ("id") ON DELETE SET NULL,
    "invoice_run_id" UUID NOT NULL REFERENCES "invoicerun" ("id") ON DELETE CASCADE,
    "lease_id" UUID NOT NULL REFERENCES "lease" ("id") ON DELETE CASCADE
);
COMMENT ON TABLE "invoicerunitem" IS 'Outcome of one lease inside an invoice run.';
CREATE TABLE IF NOT EXISTS "numbersequence" (
    "id" UUID NOT NULL PRIMARY KEY,
    "created_at" TIMESTAMPTZ NOT NULL DEFAULT CURRENT_TIMESTAMP,
    "updated_at" TIMESTAMPTZ NOT NULL DEFAULT CURRENT_TIMESTAMP,
    "kind" VARCHAR(11) NOT NULL,
    "year_month" VARCHAR(6) NOT NULL,
    "current_value" INT NOT NULL DEFAULT 0,
    "organization_id" UUID NOT NULL REFERENCES "organization" ("id") ON DELETE CASCADE,
    CONSTRAINT "uid_numbersequ_organiz_b1a9d4" UNIQUE ("organization_id", "kind", "year_month")
);
COMMENT ON COLUMN "numbersequence"."kind" IS 'INVOICE: invoice\nCREDIT_NOTE: credit_note';
COMMENT ON TABLE "numbersequence" IS 'Counter row backing invoice and credit note numbers.';
CREATE TABLE IF NOT EXISTS "aerich" (
    "id" SERIAL NOT NULL PRIMARY KEY,
    "version" VARCHAR(255) NOT NULL,
    "app" VARCHAR(100) NOT NULL,
    "content" JSONB NOT NULL
);"""


async def downgrade(db: BaseDBAsyncClient) -> str:
    return """
        """
