"""HTML templates for the connection hub.

Theme colors:
- Background: #FAF9F7 (warm cream)
- Primary: #D97756 (terracotta)
- Primary hover: #C4684A
- Text: #1A1915 (dark charcoal)
- Secondary text: #6B6860
- Border: #E5E4E0, #D9D8D4

Values substituted into these templates must already be HTML-escaped.
"""

# ============== Connection Hub ==============

HUB_PAGE = """
<!DOCTYPE html>
<html>
<head>
    <title>Connect Services - MCP Bridge</title>
    <style>
        body {{ font-family: 'Söhne', -apple-system, BlinkMacSystemFont, 'Segoe UI', sans-serif;
               background: #FAF9F7;
               min-height: 100vh; display: flex; align-items: center; justify-content: center; margin: 0; }}
        .container {{ background: white; padding: 40px; border-radius: 16px; box-shadow: 0 4px 24px rgba(0,0,0,0.08);
                     width: 100%; max-width: 480px; border: 1px solid #E5E4E0; }}
        h1 {{ margin: 0 0 8px; color: #1A1915; font-size: 24px; font-weight: 600; }}
        p {{ color: #6B6860; margin: 0 0 24px; }}
        .provider {{ display: flex; align-items: center; justify-content: space-between; gap: 15px; padding: 16px;
                    background: #F5F5F0; border-radius: 8px; margin-bottom: 10px; }}
        .provider-name {{ font-weight: 600; color: #1A1915; }}
        .provider-description {{ color: #6B6860; font-size: 14px; }}
        .connect {{ padding: 8px 16px; background: #D97756; color: white; border-radius: 8px; font-size: 14px;
                   font-weight: 600; text-decoration: none; white-space: nowrap; }}
        .connect:hover {{ background: #C4684A; }}
        .connected {{ color: #065F46; font-weight: 600; font-size: 14px; white-space: nowrap; }}
        .done {{ display: block; width: 100%; margin-top: 24px; padding: 14px; background: #D97756; color: white;
                border: none; border-radius: 8px; font-size: 15px; font-weight: 600; text-align: center;
                text-decoration: none; box-sizing: border-box; }}
        .done:hover {{ background: #C4684A; }}
        .done.disabled {{ background: #D9D8D4; pointer-events: none; }}
        .info {{ background: #F5F5F0; color: #6B6860; padding: 12px; border-radius: 8px; margin-bottom: 20px; font-size: 14px; }}
    </style>
</head>
<body>
    <div class="container">
        <h1>Connect Your Services</h1>
        <p>Connect at least one service, then continue.</p>
        <div class="info">{client_name} is requesting access to your connected services.</div>
        {providers}
        <a href="/auth/done" class="done{done_class}">Done</a>
    </div>
</body>
</html>
"""

PROVIDER_ROW = """
        <div class="provider">
            <div>
                <div class="provider-name">{display_name}</div>
                <div class="provider-description">{description}</div>
            </div>
            {action}
        </div>
"""

CONNECT_LINK = '<a class="connect" href="/auth/connect/{key}">Connect</a>'
CONNECTED_BADGE = '<span class="connected">✓ Connected</span>'


# ============== Completion & Errors ==============

COMPLETE_PAGE = """
<!DOCTYPE html>
<html>
<head>
    <title>Authentication Complete - MCP Bridge</title>
    <style>
        body {{ font-family: 'Söhne', -apple-system, BlinkMacSystemFont, 'Segoe UI', sans-serif;
               background: #FAF9F7;
               min-height: 100vh; display: flex; align-items: center; justify-content: center; margin: 0; }}
        .container {{ background: white; padding: 40px; border-radius: 16px; box-shadow: 0 4px 24px rgba(0,0,0,0.08);
                     width: 100%; max-width: 560px; border: 1px solid #E5E4E0; }}
        h1 {{ margin: 0 0 8px; color: #1A1915; font-size: 24px; font-weight: 600; }}
        p {{ color: #6B6860; margin: 0 0 24px; }}
        .success {{ background: #D1FAE5; color: #065F46; padding: 12px; border-radius: 8px; margin-bottom: 20px; border: 1px solid #A7F3D0; }}
        textarea {{ width: 100%; height: 140px; padding: 12px 14px; border: 1px solid #D9D8D4; border-radius: 8px;
                   font-family: monospace; font-size: 12px; box-sizing: border-box; background: #FAF9F7; resize: none; }}
        .meta {{ color: #6B6860; font-size: 14px; margin-top: 12px; }}
    </style>
</head>
<body>
    <div class="container">
        <h1>Authentication Complete</h1>
        <div class="success">Connected: {providers}</div>
        <p>Copy this access token into your client configuration.</p>
        <textarea readonly onclick="this.select()">{access_token}</textarea>
        <div class="meta">Expires in {expires_in} seconds.</div>
    </div>
</body>
</html>
"""

ERROR_PAGE = """
<!DOCTYPE html>
<html>
<head>
    <title>Authorization Error - MCP Bridge</title>
    <style>
        body {{ font-family: 'Söhne', -apple-system, BlinkMacSystemFont, 'Segoe UI', sans-serif;
               background: #FAF9F7;
               min-height: 100vh; display: flex; align-items: center; justify-content: center; margin: 0; }}
        .container {{ background: white; padding: 40px; border-radius: 16px; box-shadow: 0 4px 24px rgba(0,0,0,0.08);
                     width: 100%; max-width: 400px; border: 1px solid #E5E4E0; }}
        h1 {{ margin: 0 0 8px; color: #1A1915; font-size: 24px; font-weight: 600; }}
        .error {{ background: #FEF2F2; color: #B91C1C; padding: 12px; border-radius: 8px; margin: 20px 0; border: 1px solid #FECACA; }}
        p {{ color: #6B6860; margin: 0; font-size: 14px; }}
    </style>
</head>
<body>
    <div class="container">
        <h1>Authorization Failed</h1>
        <div class="error">{message}</div>
        <p>Close this window and start the connection again from your client.</p>
    </div>
</body>
</html>
"""
