from telegram import User

# MarkdownV2 reserved characters, backslash included
SPECIAL_CHARS = "\\_*[]()~`>#+-=|{}.!"


def escape_markdown(text: str) -> str:
    return "".join("\\" + ch if ch in SPECIAL_CHARS else ch for ch in text)


def mention(user: User) -> str:
    link = f"tg://user?id={user.id}"
    if user.first_name and user.last_name:
        return f"[{escape_markdown(user.first_name)} {escape_markdown(user.last_name)}]({link})"
    if user.first_name:
        return f"[{escape_markdown(user.first_name)}]({link})"
    if user.username:
        return f"[@{escape_markdown(user.username)}]({link})"
    return f"[User]({link})"
