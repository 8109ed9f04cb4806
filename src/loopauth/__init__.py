"""loopauth -- the loopback redirect leg of the OAuth2 Authorization Code flow.

Native applications cannot host a public redirect endpoint, so RFC 8252
has them listen on the loopback interface instead. This package opens the
user's default browser at an authorization URL, listens on a loopback port
for the provider's redirect, shows the user a result page, and hands the
intercepted callback URI back to the caller.

Typical usage::

    from loopauth.flow import SystemWebBrowser

    browser = SystemWebBrowser()
    redirect_uri = browser.update_redirect_uri("http://127.0.0.1/")
    callback = browser.get_authorization_code_sync(auth_url, redirect_uri, timeout=300)

Modules:
    app: Typer application and CLI entry point.
    browser: Default browser launcher with ordered platform probes.
    loopback: Single-request loopback listener and callback handler.
    flow: Composition of the launcher and the interceptor.
    models: Pydantic models shared across the package.
    redirect: Loopback redirect URI validation and port assignment.
    config: XDG-aware configuration and precedence resolution.
    exceptions: Exception hierarchy with exit-code mapping.
    exit_codes: Numeric exit codes following clig.dev conventions.
    output: stdout/stderr formatting system with Rich support.
"""

__version__ = "0.1.0"
