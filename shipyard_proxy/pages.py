from html import escape

from fastapi.responses import HTMLResponse

from .config import Settings

PAGE_STYLE = """
          body { font-family: Arial, sans-serif; max-width: 800px; margin: 0 auto; padding: 20px; }
          pre { background: #f4f4f4; padding: 10px; border-radius: 5px; }
          .status { color: green; font-weight: bold; }
          .error { color: red; font-weight: bold; }
"""


def status_page(settings: Settings, host: str | None) -> HTMLResponse:
    """Diagnostic page shown on `/` when the request names no project."""
    host = escape(host or 'unknown')
    domain = escape(settings.primary_domain)
    base = escape(settings.base_path)

    if settings.resolution_mode == 'path':
        usage = (f'<p>Access your project by path: <pre>/<em>project-id</em>/</pre></p>\n'
                 f'        <p>For example: <pre>/it-works-my-fam/</pre></p>')
    else:
        usage = (f'<p>Access your project using the subdomain pattern: '
                 f'<pre><em>project-id</em>.{domain}</pre></p>\n'
                 f'        <p>For example: <pre>it-works-my-fam.{domain}</pre></p>')

    return HTMLResponse(f"""
    <html>
      <head>
        <title>Proxy Server Status</title>
        <style>{PAGE_STYLE}</style>
      </head>
      <body>
        <h1>Proxy Server Status</h1>
        <p class="status">Server is alive!</p>
        <p>You accessed this server from: <strong>{host}</strong></p>

        <h2>How to use this proxy:</h2>
        {usage}
        <p>This will proxy to: <pre>{base}/it-works-my-fam/</pre></p>
      </body>
    </html>
    """)


def error_page(status_code: int, message: str) -> HTMLResponse:
    return HTMLResponse(f"""
    <html>
      <head>
        <title>Proxy Error</title>
        <style>{PAGE_STYLE}</style>
      </head>
      <body>
        <h1 class="error">Proxy Error</h1>
        <p>An error occurred while connecting to the target server.</p>
        <pre>{escape(message)}</pre>
        <p>Please check the project ID and try again.</p>
      </body>
    </html>
    """, status_code=status_code)
