"""
Announcement phrase construction.

Ticket and counter numbers are spelled out one character at a time in Urdu
("A001" is read as "ای زیرو زیرو ایک", never as a number), then placed into a
fixed sentence. Everything here is pure.
"""

URDU_PHONETICS: dict[str, str] = {
    "A": "ای",
    "B": "بی",
    "C": "سی",
    "D": "ڈی",
    "E": "ای",
    "F": "ایف",
    "G": "جی",
    "H": "ایچ",
    "I": "آئی",
    "J": "جے",
    "K": "کے",
    "L": "ایل",
    "M": "ایم",
    "N": "این",
    "O": "او",
    "P": "پی",
    "Q": "کیو",
    "R": "آر",
    "S": "ایس",
    "T": "ٹی",
    "U": "یو",
    "V": "وی",
    "W": "ڈبلیو",
    "X": "ایکس",
    "Y": "وائے",
    "Z": "زیڈ",
    "0": "زیرو",
    "1": "ایک",
    "2": "دو",
    "3": "تین",
    "4": "چار",
    "5": "پانچ",
    "6": "چھ",
    "7": "سات",
    "8": "آٹھ",
    "9": "نو",
}

# Separators become a short pause: an extra space between tokens.
SEPARATOR_CHARACTERS = frozenset("- ")
SEPARATOR_TOKEN = " "

CALL_TEMPLATE = "ٹکٹ نمبر {ticket} برائے کرم کاؤنٹر نمبر {counter} پر تشریف لائیں۔ شکریہ۔"
RECALL_TEMPLATE = (
    "ٹکٹ نمبر {ticket} برائے کرم فوری طور پر کاؤنٹر نمبر {counter} پر تشریف لائیں۔ شکریہ۔"
)
RECALL_MARKER = "فوری طور پر"


def phonetic_token(char: str) -> str:
    """Token for a single character; unknown characters pass through."""
    upper = char.upper()
    if upper in URDU_PHONETICS:
        return URDU_PHONETICS[upper]
    if char in SEPARATOR_CHARACTERS:
        return SEPARATOR_TOKEN
    return char


def transliterate(text: str) -> str:
    if not text:
        return text
    return " ".join(phonetic_token(ch) for ch in text).strip()


def build_announcement(ticket_number: str, counter_number: int | str, is_recall: bool = False) -> str:
    template = RECALL_TEMPLATE if is_recall else CALL_TEMPLATE
    return template.format(
        ticket=transliterate(ticket_number),
        counter=transliterate(str(counter_number)),
    )


def filename_for(ticket_number: str, counter_number: int | str) -> str:
    return f"{ticket_number}-counter{counter_number}.mp3"
