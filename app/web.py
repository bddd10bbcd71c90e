"""HTML pages for the cookie-based sign-in, sign-up and admin unlock flows."""

from __future__ import annotations

from html import escape
from textwrap import dedent

from .config import Settings


PAGE_TEMPLATE = dedent(
    """
<!DOCTYPE html>
<html lang="en">
<head>
    <meta charset="utf-8" />
    <meta name="viewport" content="width=device-width, initial-scale=1" />
    <title>__APP_NAME__ · __HEADING__</title>
    <style>
        :root {
            color-scheme: dark;
            font-family: 'Inter', 'Segoe UI', system-ui, -apple-system, sans-serif;
            --surface: #141414;
            --text-primary: #f5f5f5;
            --text-muted: #a6a6a6;
            --outline: #2b2b2b;
            --accent: #f0f0f0;
            --accent-contrast: #050505;
            --danger: #ff6b6b;
            background: #000000;
            color: var(--text-primary);
        }
        body {
            margin: 0;
            min-height: 100vh;
            display: flex;
            align-items: center;
            justify-content: center;
        }
        main {
            width: min(420px, 100% - 2rem);
            background: var(--surface);
            border: 1px solid var(--outline);
            border-radius: 16px;
            padding: 2rem;
        }
        h1 {
            margin-top: 0;
        }
        label {
            display: block;
            margin-bottom: 1rem;
            color: var(--text-muted);
        }
        input {
            display: block;
            width: 100%;
            box-sizing: border-box;
            margin-top: 0.35rem;
            padding: 0.6rem 0.75rem;
            border-radius: 8px;
            border: 1px solid var(--outline);
            background: #0b0b0b;
            color: var(--text-primary);
        }
        button {
            width: 100%;
            padding: 0.7rem;
            border: none;
            border-radius: 8px;
            background: var(--accent);
            color: var(--accent-contrast);
            font-weight: 600;
            cursor: pointer;
        }
        .error {
            color: var(--danger);
        }
        .muted {
            color: var(--text-muted);
        }
    </style>
</head>
<body>
    <main>
        <h1>__HEADING__</h1>
        __ERROR__
        <form method="post" action="__ACTION__">
            __FIELDS__
            <input type="hidden" name="next" value="__NEXT__" />
            <button type="submit">__SUBMIT__</button>
        </form>
        __FOOTER__
    </main>
</body>
</html>
    """
)

SIGN_IN_ERRORS = {
    "invalid": "That email and password combination was not recognised.",
    "exists": "An account with that email already exists. Sign in instead.",
    "server": "Something went wrong. Please try again.",
}


def _field(label: str, name: str, input_type: str = "text", required: bool = True) -> str:
    required_attr = " required" if required else ""
    return (
        f'<label>{escape(label)}'
        f'<input type="{input_type}" name="{name}"{required_attr} /></label>'
    )


def _render(
    settings: Settings,
    *,
    heading: str,
    action: str,
    fields: list[str],
    submit: str,
    next_path: str,
    error: str | None = None,
    footer: str = "",
) -> str:
    replacements = {
        "__APP_NAME__": escape(settings.app_name),
        "__HEADING__": escape(heading),
        "__ERROR__": f'<p class="error">{escape(error)}</p>' if error else "",
        "__ACTION__": escape(action),
        "__FIELDS__": "\n            ".join(fields),
        "__NEXT__": escape(next_path),
        "__SUBMIT__": escape(submit),
        "__FOOTER__": footer,
    }
    html = PAGE_TEMPLATE
    for placeholder, value in replacements.items():
        html = html.replace(placeholder, value)
    return html


def render_sign_in_page(
    settings: Settings, *, next_path: str = "/me", error: str | None = None
) -> str:
    return _render(
        settings,
        heading="Sign in",
        action="/api/auth/sign-in",
        fields=[
            _field("Email", "email", "email"),
            _field("Password", "password", "password"),
        ],
        submit="Sign in",
        next_path=next_path,
        error=SIGN_IN_ERRORS.get(error or ""),
        footer='<p class="muted">New here? <a href="/sign-up">Create an account</a>.</p>',
    )


def render_sign_up_page(
    settings: Settings, *, next_path: str = "/me", error: str | None = None
) -> str:
    return _render(
        settings,
        heading="Create an account",
        action="/api/auth/sign-up",
        fields=[
            _field("Display name", "name", required=False),
            _field("Email", "email", "email"),
            _field("Password", "password", "password"),
        ],
        submit="Sign up",
        next_path=next_path,
        error=SIGN_IN_ERRORS.get(error or ""),
        footer='<p class="muted">Already registered? <a href="/sign-in">Sign in</a>.</p>',
    )


def render_admin_unlock_page(
    settings: Settings, *, next_path: str = "/reviews", failed: bool = False
) -> str:
    return _render(
        settings,
        heading="Admin unlock",
        action="/api/admin/unlock",
        fields=[_field("Passphrase", "passphrase", "password")],
        submit="Unlock",
        next_path=next_path,
        error="Incorrect passphrase." if failed else None,
    )
