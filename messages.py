"""
Every outbound SMS text lives here.

Static entries are plain strings; dynamic ones are callables taking the values
they render. ``msg(key, *args)`` resolves either kind.
"""
from typing import Any, Callable, Dict, List, Optional, Union

from draft_state import FIELD_LABELS, PHOTO_QUOTA, Draft

MENU_TEXT = """What's next?
→ SELL - List an item
→ HELP - Commands
→ LOGOUT - Sign out"""

FIELD_PROMPTS = {
    "designer": "Who's the designer or brand? (e.g. Sana Safinaz, Elan, Maria B)",
    "item_type": "What kind of piece is it? (e.g. 3-piece suit, kurta, lehnga)",
    "size": "What size is it? (XS, S, M, L, XL or measurements)",
    "condition": "What condition is it in? (new with tags, like new, gently used)",
    "asking_price": "What's your asking price in USD? (e.g. 85)",
}


def _item_line(draft: Draft) -> str:
    return " ".join(v for v in (draft.fields.designer, draft.fields.item_type) if v)


def _known_lines(draft: Draft) -> List[str]:
    f = draft.fields
    lines: List[str] = []
    item = _item_line(draft)
    if item:
        lines.append(f"• {item}")
    if f.pieces_included:
        lines.append(f"• Includes {f.pieces_included}")
    if f.size:
        lines.append(f"• Size {f.size}")
    if f.condition:
        lines.append(f"• {f.condition}")
    if f.asking_price:
        lines.append(f"• Asking ${f.asking_price}")
    if f.details:
        lines.append(f"• Note: {f.details}")
    return lines


def _photo_phrase(count: int) -> str:
    return f"{count} photo{'s' if count != 1 else ''}"


def _extracted(draft: Draft, missing: List[str]) -> str:
    parts = ["Got it! ✓"]
    lines = _known_lines(draft)
    if lines:
        parts.append("\n".join(lines))
    if missing:
        labels = [FIELD_LABELS[name] for name in missing]
        parts.append(f"Still need: {', '.join(labels)}")
        parts.append(FIELD_PROMPTS[missing[0]])
    return "\n\n".join(parts)


def _summary(draft: Draft) -> str:
    f = draft.fields
    body = [
        _item_line(draft),
        f"Size {f.size or ''} • {f.condition or ''}",
        f"Asking: ${f.asking_price or ''}",
    ]
    if f.pieces_included:
        body.append(f"Includes: {f.pieces_included}")
    if f.details:
        body.append(f"Note: {f.details}")
    body.append(f"Photos: {draft.photo_count()} ✓")
    return (
        "Ready to submit! 🎉\n\n━━━━━━━━━━━━━━━━\n"
        + "\n".join(body)
        + "\n━━━━━━━━━━━━━━━━\n\nReply:\n1 = Submit\n2 = Edit something\n3 = Cancel"
    )


def _resume(draft: Draft, missing: List[str]) -> str:
    lines = _known_lines(draft)
    count = draft.photo_count()
    if count:
        lines.append(f"• {_photo_phrase(count)} uploaded")
    text = "Welcome back! Here's your draft:\n\n" + ("\n".join(lines) if lines else "• Nothing yet")
    if missing:
        labels = [FIELD_LABELS[name] for name in missing]
        text += f"\n\nStill need: {', '.join(labels)}\n\n{FIELD_PROMPTS[missing[0]]}"
    elif count < PHOTO_QUOTA:
        needed = PHOTO_QUOTA - count
        text += f"\n\nJust need {_photo_phrase(needed)} more! 📸"
    else:
        text += "\n\nAll set! Reply 1 to submit."
    return text


def _ready_for_photos(draft: Draft) -> str:
    needed = draft.photos_needed()
    return (
        "Perfect! Here's your item:\n\n"
        + "\n".join(_known_lines(draft))
        + f"\n\nNow send me {needed} more photo{'s' if needed != 1 else ''} (including the brand tag)! 📸"
    )


def _photo_received(count: int, feedback: Optional[str] = None, failed: int = 0, tag_nudge: bool = False) -> str:
    parts: List[str] = []
    if feedback:
        parts.append(f"{feedback} ✨")
    if failed:
        parts.append(
            f"{_photo_phrase(failed).capitalize()} didn't upload. Please send {'it' if failed == 1 else 'them'} again."
        )
    if count >= PHOTO_QUOTA:
        parts.append(f"Got {count} photos! ✓")
    else:
        parts.append(f"Got {_photo_phrase(count)}! Send {PHOTO_QUOTA - count} more 📸")
    if tag_nudge:
        parts.append("If you have a photo of the brand tag, that helps buyers trust authenticity 🏷️")
    return "\n\n".join(parts)


def _draft_found(draft: Draft) -> str:
    item = _item_line(draft) or "your item"
    return f'Welcome back! 👋\n\nYou have a draft: "{item}"\n\n1 = Continue where you left off\n2 = Start fresh'


def _status(draft: Draft, missing: List[str]) -> str:
    if not missing and draft.photo_count() >= PHOTO_QUOTA:
        return _summary(draft)
    return _resume(draft, missing).replace("Welcome back! Here's your draft:", "Here's what I have so far:", 1)


MessageValue = Union[str, Callable[..., str]]

MESSAGES: Dict[str, MessageValue] = {
    # ============ WELCOME & MENU ============
    "WELCOME_NEW_USER": (
        "Hey! 👋 Welcome to The Phir Story — Pakistani designer resale made easy.\n\n"
        "Quick question: Have you sold with us before?\n\nReply YES or NO"
    ),
    "WELCOME_KNOWN_SELLER": "Hey, welcome back! 👋\n\n" + MENU_TEXT,
    "MENU": MENU_TEXT,

    # ============ GLOBAL COMMANDS ============
    "HELP": (
        "Here to help! 💛\n\nCommands:\nSELL → List an item\nSTATUS → Your draft so far\n"
        "CANCEL → Delete the current draft\nRESTART → Start the draft over\nMENU → Main menu\n"
        "LOGOUT → Sign out\nSTOP → Unsubscribe\n\nQuestions? Just reply here."
    ),
    "STOP": "You're unsubscribed. 💛\n\nText START anytime to come back — your account stays safe.",
    "START": "Welcome back! 💛 You're subscribed again.",
    "LOGOUT": "You've been logged out. 🔒\n\nText MENU when you're ready to sign back in.",
    "SESSION_EXPIRED": "It's been a while! 🔒\n\nPlease verify your email to continue.",
    "SESSION_REVOKED": "For your security, please verify your email to continue. 🔒\n\nWhat email is your account under?",
    "RATE_LIMITED": "Too many attempts. Please try again in an hour. ⏳",
    "UNSUBSCRIBED_BLOCK": "You're currently unsubscribed.\n\nText START when you're ready!",
    "ERROR": "Oops, something went wrong! 💛\n\nText MENU to start fresh.",
    "CONCURRENT_UPDATE": "Got two messages at once! Please resend your last message.",
    "DIDNT_UNDERSTAND": "Sorry, I didn't get that! 🤔\n\n" + MENU_TEXT,
    "FALLBACK_MENU": "Let's keep it simple. Reply with a number:\n\n1 = Sell an item\n2 = Help\n3 = Log out",

    # ============ ACCOUNT CHECK ============
    "ASK_EXISTING_EMAIL": "What email did you sign up with?",
    "ASK_NEW_EMAIL": "What email should we use for your account?\n\nExample: you@gmail.com",
    "ACCOUNT_CHECK_INVALID": "Just need a quick YES or NO — have you sold with us before?",
    "ACCOUNT_CHECK_FALLBACK": "Reply with a number:\n\n1 = I've sold with you before\n2 = I'm new here",
    "EMAIL_FALLBACK": "Just send the email on your account, like you@gmail.com\n\nOr reply NEW to create an account.",

    # ============ EMAIL VERIFICATION ============
    "ASK_EMAIL_VERIFY": "Quick verification! 🔒\n\nWhat email is your account under?",
    "VERIFIED": "You're in! ✅\n\n" + MENU_TEXT,
    "EMAIL_NO_MATCH": lambda attempt: (
        f"That doesn't match our records.\n\nTry again? (Attempt {attempt}/3)\n\nOr text HELP if you're stuck."
    ),
    "EMAIL_TOO_MANY_ATTEMPTS": (
        "No worries — let's start over. 💛\n\nHave you sold with us before?\n\nReply YES or NO"
    ),

    # ============ EXISTING EMAIL LOOKUP ============
    "EMAIL_FOUND_LINKED": lambda name=None: (
        f"Welcome back{' ' + name if name else ''}! 🎉\n\nYou're all set. " + MENU_TEXT
    ),
    "EMAIL_NOT_FOUND": lambda attempt: (
        f"That doesn't match our records.\n\nTry again? (Attempt {attempt}/3)\n\nOr reply NEW to create an account."
    ),
    "EMAIL_NOT_FOUND_MAX": (
        "That doesn't match our records.\n\nLet's start over — have you sold with us before?\n\nReply YES or NO"
    ),

    # ============ NEW ACCOUNT ============
    "ACCOUNT_CREATED": "You're all set! 🎉 Welcome to The Phir Story.\n\n" + MENU_TEXT,
    "EMAIL_EXISTS_LINKED": lambda name=None: (
        f"Good news — found your account!{' Hey ' + name + '!' if name else ''} 🎉\n\n"
        "Phone linked & ready to go.\n\n" + MENU_TEXT
    ),
    "INVALID_EMAIL": "That doesn't look like an email.\n\nExample: you@gmail.com",

    # ============ SELL FLOW ============
    "SELL_START": (
        "Let's list your item! 📸\n\nTell me about it — designer, what it is, size, condition, "
        "and your asking price.\n\nText, voice note or photos — whatever's easiest!"
    ),
    "SELL_EXTRACTED": _extracted,
    "SELL_ASK_FIELD": lambda field_name: FIELD_PROMPTS[field_name],
    "SELL_ASK_DETAILS": "Any flaws or details? 📝\n\nMissing buttons, stains, alterations, material?\n\nReply SKIP if none!",
    "SELL_DETAILS_HINT": "Any flaws or details (stains, alterations, missing buttons)? Text them anytime 📝",
    "SELL_READY_FOR_PHOTOS": _ready_for_photos,
    "SELL_PHOTO_RECEIVED": _photo_received,
    "SELL_PHOTO_NOT_CLOTHING": (
        "Hmm, that doesn't look like clothing! 😄\n\nSend me photos of the outfit you're listing."
    ),
    "SELL_PHOTO_FAILED": lambda failed: (
        f"{_photo_phrase(failed).capitalize()} didn't upload. Please send {'it' if failed == 1 else 'them'} again. 📸"
    ),
    "SELL_SUMMARY": _summary,
    "SELL_STATUS": _status,
    "SELL_CONFIRM_OPTIONS": "Reply:\n1 = Submit\n2 = Edit something\n3 = Cancel",
    "SELL_WHAT_TO_EDIT": (
        "What do you want to change?\n\n1 = Details (designer, size, etc.)\n2 = Photos\n3 = Price\n4 = Go back"
    ),
    "SELL_ASK_NEW_PRICE": "What's your new asking price in USD?",
    "SELL_COMPLETE": (
        "Done! 🎉 Your listing is submitted.\n\nWe'll review & text you once it's live (usually 24-48 hrs).\n\n"
        "Reply SELL to list another, or MENU for options."
    ),
    "SELL_SUBMIT_FAILED": "Oops, we couldn't submit your listing just now. Your draft is safe.\n\nReply 1 to try again.",
    "SELL_DRAFT_FOUND": _draft_found,
    "SELL_DRAFT_CHOICE_INVALID": "Just reply 1 to continue your draft or 2 to start fresh.",
    "SELL_DRAFT_DELETED": "Draft deleted — fresh start!",
    "SELL_CANCELLED": "Draft deleted. 💛\n\n" + MENU_TEXT,
    "SELL_DRAFT_SAVED": "No worries! Your draft is saved. 💛\n\nText SELL when you're ready to continue.",
    "SELL_DRAFT_MISSING": "That draft isn't available anymore.\n\nReply SELL to start a new listing.",
    "SELL_UPDATED": "Updated! ✓",
    "VOICE_NOT_TRANSCRIBED": "Couldn't catch that voice note. 🎙️ Please type instead.",
    "SELL_CONFIRM_DIDNT_UNDERSTAND": "I didn't catch that! 🤔\n\nReply:\n1 = Submit\n2 = Edit something\n3 = Cancel",
    "SELL_RESUME": _resume,
    "SELL_INVALID_PRICE": "That doesn't look like a price. Just enter a number like 85 or $85",
    "SELL_DIDNT_UNDERSTAND": (
        "I didn't catch that! 🤔\n\nTry again — tell me the designer, item type, size, condition, and price.\n\n"
        'Example: "Sana Safinaz 3-piece, medium, like new, $85"'
    ),
    "SELL_FALLBACK_MENU": lambda field_name: (
        f"Let's take it step by step. {FIELD_PROMPTS[field_name]}\n\n"
        "Or reply with a number:\n1 = See what I have so far\n2 = Start over\n3 = Cancel this draft"
    ),
    "SELL_PHOTOS_FALLBACK_MENU": lambda needed: (
        f"I still need {_photo_phrase(needed)} of the item. 📸\n\n"
        "Or reply with a number:\n1 = See what I have so far\n2 = Start over\n3 = Cancel this draft"
    ),
}


def msg(key: str, *args: Any) -> str:
    """Get a message by key, rendering dynamic messages with ``args``."""
    message = MESSAGES.get(key)
    if message is None:
        return str(MESSAGES["ERROR"])
    if callable(message):
        return message(*args)
    return message
