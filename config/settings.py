"""Matrix settings loaded from environment variables."""

from pydantic_settings import BaseSettings


class MatrixSettings(BaseSettings):
    model_config = {"env_file": ".env", "env_file_encoding": "utf-8", "env_prefix": "MATRIX_"}

    # Rows
    auto_aggregate_parents: bool = True
    blank_as_zero: bool = True

    # Totals
    show_grand_total: bool = False
    show_subtotals: bool = False
    show_column_total: bool = False
    grand_total_label: str = "Grand Total"
    subtotal_label_template: str = "Total {label}"  # {label} = parent row label
    column_total_label: str = "Column total"

    # Numbers
    display_units: str = "auto"  # "auto" | "none" | "thousands" | "millions" | "billions"
    decimals: int = 0

    # Conditional formatting / custom table
    conditional_formatting_enabled: bool = True
    custom_table_enabled: bool = False


settings = MatrixSettings()
