"""
Indian numbering system helpers: amount in words and grouped figures
(1,20,270 rather than 120,270) for invoices and salary slips.
"""
import math

ONES = ['', 'One', 'Two', 'Three', 'Four', 'Five', 'Six', 'Seven', 'Eight', 'Nine']
TEENS = ['Ten', 'Eleven', 'Twelve', 'Thirteen', 'Fourteen', 'Fifteen',
         'Sixteen', 'Seventeen', 'Eighteen', 'Nineteen']
TENS = ['', '', 'Twenty', 'Thirty', 'Forty', 'Fifty', 'Sixty', 'Seventy', 'Eighty', 'Ninety']

CRORE = 10_000_000
LAKH = 100_000
THOUSAND = 1_000

ZERO_LABEL = 'Zero'


def _below_thousand(n: int) -> str:
    if n == 0:
        return ''
    if n < 10:
        return ONES[n]
    if n < 20:
        return TEENS[n - 10]
    if n < 100:
        tens, ones = divmod(n, 10)
        return f"{TENS[tens]} {ONES[ones]}".strip()
    hundreds, remainder = divmod(n, 100)
    words = f"{ONES[hundreds]} Hundred"
    if remainder:
        words += ' ' + _below_thousand(remainder)
    return words


def _indian_words(n: int) -> str:
    if n == 0:
        return ''

    parts = []
    if n >= CRORE:
        crores, n = divmod(n, CRORE)
        # 100 crore and above: the crore count itself is spelled in Indian grouping
        parts.append(f"{_indian_words(crores)} Crore")
    if n >= LAKH:
        lakhs, n = divmod(n, LAKH)
        parts.append(f"{_below_thousand(lakhs)} Lakh")
    if n >= THOUSAND:
        thousands, n = divmod(n, THOUSAND)
        parts.append(f"{_below_thousand(thousands)} Thousand")
    if n:
        parts.append(_below_thousand(n))
    return ' '.join(parts)


def number_to_indian_words(amount) -> str:
    """
    Render a rupee amount in words using lakh/crore grouping.

    The fractional part is dropped. Zero, negative and non-finite amounts
    render as ``"Zero"`` instead of raising.

        >>> number_to_indian_words(1234567)
        'Twelve Lakh Thirty Four Thousand Five Hundred Sixty Seven'
    """
    if amount is None:
        return ZERO_LABEL
    try:
        value = float(amount)
    except (TypeError, ValueError):
        return ZERO_LABEL
    if not math.isfinite(value) or value <= 0:
        return ZERO_LABEL

    integer_part = int(math.floor(value))
    if integer_part == 0:
        return ZERO_LABEL
    return _indian_words(integer_part)


def format_indian_number(number, decimals: int = 0) -> str:
    """Group digits the Indian way: last three, then pairs."""
    value = float(number or 0)
    sign = '-' if value < 0 else ''
    formatted = f"{abs(value):.{decimals}f}"
    integer_part, _, fraction = formatted.partition('.')

    if len(integer_part) > 3:
        head, tail = integer_part[:-3], integer_part[-3:]
        groups = []
        while len(head) > 2:
            groups.insert(0, head[-2:])
            head = head[:-2]
        if head:
            groups.insert(0, head)
        integer_part = ','.join(groups + [tail])

    return f"{sign}{integer_part}.{fraction}" if fraction else f"{sign}{integer_part}"


def format_indian_currency(amount, decimals: int = 2) -> str:
    """Format an amount as rupees, e.g. ``₹1,20,270.00``"""
    figure = format_indian_number(amount, decimals)
    if figure.startswith('-'):
        return f"-₹{figure[1:]}"
    return f"₹{figure}"
