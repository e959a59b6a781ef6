"""Create effective-dated social insurance / housing fund config table."""

from yoyo import step

__depends__ = {"0001_tax_bracket_versions"}

steps = [
    step(
        """
        CREATE TABLE social_insurance_configs (
            id                    UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            city                  TEXT NOT NULL,
            effective_from        DATE NOT NULL,
            effective_to          DATE,
            social_min_base       NUMERIC(12,2) NOT NULL,
            social_max_base       NUMERIC(12,2) NOT NULL,
            pension_rate          NUMERIC(6,4) NOT NULL,
            medical_rate          NUMERIC(6,4) NOT NULL,
            unemployment_rate     NUMERIC(6,4) NOT NULL,
            housing_fund_min_base NUMERIC(12,2) NOT NULL,
            housing_fund_max_base NUMERIC(12,2) NOT NULL,
            housing_fund_rate     NUMERIC(6,4) NOT NULL,
            created_at            TIMESTAMPTZ DEFAULT NOW(),
            CHECK (effective_to IS NULL OR effective_to > effective_from),
            CHECK (social_min_base <= social_max_base),
            CHECK (housing_fund_min_base <= housing_fund_max_base)
        )
        """,
        "DROP TABLE IF EXISTS social_insurance_configs",
    ),
    step(
        "CREATE INDEX idx_social_insurance_configs_lookup "
        "ON social_insurance_configs (city, effective_from)",
        "DROP INDEX IF EXISTS idx_social_insurance_configs_lookup",
    ),
    step(
        "CREATE UNIQUE INDEX uq_social_insurance_configs_open "
        "ON social_insurance_configs (city) WHERE effective_to IS NULL",
        "DROP INDEX IF EXISTS uq_social_insurance_configs_open",
    ),
]
