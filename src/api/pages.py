"""Minimal HTML documents around cached render fragments."""
import html

WELCOME_BODY = (
    "<h1>Bookmarks</h1>\n"
    "<p>Clip pages with the bookmarklet and annotate them with comments. "
    "Sign in or send a bearer token to see your feed.</p>"
)


def render_page(title: str, body: str) -> str:
    """Wrap already-rendered HTML in a complete document."""
    return (
        "<!doctype html>\n"
        '<html lang="en">\n'
        f'<head><meta charset="utf-8"><title>{html.escape(title)}</title></head>\n'
        f"<body>\n{body}\n</body>\n"
        "</html>\n"
    )
