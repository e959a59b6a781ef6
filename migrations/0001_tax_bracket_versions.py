"""Create effective-dated tax bracket tables."""

from yoyo import step

__depends__ = {}  # type: ignore[var-annotated]

steps = [
    step(
        """
        CREATE TABLE tax_bracket_versions (
            id              UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            city            TEXT NOT NULL,
            effective_from  DATE NOT NULL,
            effective_to    DATE,
            created_at      TIMESTAMPTZ DEFAULT NOW(),
            CHECK (effective_to IS NULL OR effective_to > effective_from)
        )
        """,
        "DROP TABLE IF EXISTS tax_brackets; DROP TABLE IF EXISTS tax_bracket_versions",
    ),
    step(
        """
        CREATE TABLE tax_brackets (
            id              UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            version_id      UUID NOT NULL REFERENCES tax_bracket_versions(id) ON DELETE CASCADE,
            min_income      NUMERIC(14,2) NOT NULL,
            max_income      NUMERIC(14,2),
            tax_rate        NUMERIC(6,4) NOT NULL CHECK (tax_rate BETWEEN 0 AND 1),
            quick_deduction NUMERIC(14,2) NOT NULL CHECK (quick_deduction >= 0),
            sort_order      INTEGER NOT NULL
        )
        """,
        "DROP TABLE IF EXISTS tax_brackets",
    ),
    step(
        "CREATE INDEX idx_tax_brackets_version ON tax_brackets (version_id, sort_order)",
        "DROP INDEX IF EXISTS idx_tax_brackets_version",
    ),
    step(
        "CREATE INDEX idx_tax_bracket_versions_lookup "
        "ON tax_bracket_versions (city, effective_from)",
        "DROP INDEX IF EXISTS idx_tax_bracket_versions_lookup",
    ),
    # At most one open version per city
    step(
        "CREATE UNIQUE INDEX uq_tax_bracket_versions_open "
        "ON tax_bracket_versions (city) WHERE effective_to IS NULL",
        "DROP INDEX IF EXISTS uq_tax_bracket_versions_open",
    ),
]
