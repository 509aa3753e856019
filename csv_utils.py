import csv
import re
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from io import StringIO
from typing import Mapping, Sequence, Union

from recurrence import LedgerEntry


CENT = Decimal("0.01")


def sanitize_csv_value(value: str) -> str:
    """
    Sanitize CSV values to prevent formula injection by prefixing dangerous patterns with tab.
    """
    if not value or value.strip() == "":
        return ""

    value = value.strip()

    formula_triggers = ("=", "+", "-", "@", "\t", "\r")

    if value.startswith(formula_triggers):
        return "\t" + value

    dangerous_patterns = [
        r"^cmd\s*",
        r"^powershell\s*",
        r"^bash\s*",
        r"^sh\s*",
        r"^\.",
        r"^http[s]?://",
    ]

    for pattern in dangerous_patterns:
        if re.match(pattern, value, re.IGNORECASE):
            return "\t" + value

    return value


def parse_amount(
    value: Union[str, int, Decimal], *, allow_negative: bool = False
) -> Decimal:
    """Parse an amount such as ``"R$ 1.234,56"`` or ``"1234.56"`` into a Decimal.

    When both separators appear, the rightmost one is the decimal separator.
    """
    if isinstance(value, Decimal):
        amount = value
    else:
        clean = str(value).strip()
        for token in ("R$", "$", " ", "\xa0"):
            clean = clean.replace(token, "")
        if "," in clean and "." in clean:
            if clean.rfind(",") > clean.rfind("."):
                clean = clean.replace(".", "").replace(",", ".")
            else:
                clean = clean.replace(",", "")
        else:
            clean = clean.replace(",", ".")
            if clean.count(".") > 1:
                parts = clean.split(".")
                clean = "".join(parts[:-1]) + "." + parts[-1]
        try:
            amount = Decimal(clean)
        except InvalidOperation as exc:
            raise ValueError("Invalid amount") from exc
    if not amount.is_finite():
        raise ValueError("Invalid amount")
    amount = amount.quantize(CENT, rounding=ROUND_HALF_UP)
    if amount < 0 and not allow_negative:
        raise ValueError("Amount must be positive")
    return amount


def export_entries(
    entries: Sequence[LedgerEntry], category_names: Mapping[int, str]
) -> str:
    output = StringIO()
    writer = csv.writer(output)
    writer.writerow(
        ["Date", "Type", "Description", "Amount", "Category", "Paid", "Installment", "Launch"]
    )
    for entry in entries:
        installment = (
            f"{entry.current_installment}/{entry.installments}"
            if entry.installments > 1
            else ""
        )
        writer.writerow(
            [
                entry.date.isoformat(),
                entry.type.value,
                sanitize_csv_value(entry.description),
                f"{entry.amount:.2f}",
                sanitize_csv_value(category_names.get(entry.category_id, "")),
                "1" if entry.paid else "0",
                installment,
                entry.launch_type.value if entry.launch_type else "",
            ]
        )
    return output.getvalue()
