BASE_STYLE = """
  body { font-family: Arial, sans-serif; max-width: 800px; margin: 50px auto; padding: 20px; }
  .btn { color: white; padding: 10px 20px; text-decoration: none; border-radius: 5px; margin-right: 10px; }
  .login-btn { background: #28a745; font-size: 18px; padding: 15px 30px; }
  .logout-btn { background: #dc3545; }
  .protected-btn, .retry-btn { background: #007bff; }
  .panel { padding: 20px; border-radius: 5px; margin: 20px 0; }
  .success { background: #d4edda; border: 1px solid #c3e6cb; }
  .info { background: #e9ecef; }
  .error { background: #f8d7da; border: 1px solid #f5c6cb; color: #721c24; }
  .centered { text-align: center; }
  pre { font-size: 12px; color: #666; }
"""

ANONYMOUS_PAGE = """<!DOCTYPE html>
<html>
<head>
  <title>AuthProbe - OAuth2 Test Application</title>
  <style>{{ style }}</style>
</head>
<body class="centered">
  <h1>OAuth2 Test Application</h1>
  <div class="panel info">
    <p>This application tests OAuth2 authentication against your identity provider.</p>
    <p><strong>Provider:</strong> {{ provider }}</p>
    <p><strong>Client ID:</strong> {{ client_id }}</p>
  </div>
  <a href="{{ login_url }}" class="btn login-btn">Login</a>
</body>
</html>
"""

AUTHENTICATED_PAGE = """<!DOCTYPE html>
<html>
<head>
  <title>AuthProbe - Authentication Successful</title>
  <style>{{ style }}</style>
</head>
<body>
  <div class="panel success">
    <h1>Authentication Successful</h1>
    <p>The OAuth2 integration with {{ provider }} is working.</p>
  </div>
  <div class="panel info">
    <h2>User Information:</h2>
    <p><strong>Name:</strong> {{ principal.name or 'Not provided' }}</p>
    <p><strong>Email:</strong> {{ principal.email or 'Not provided' }}</p>
    <p><strong>Username:</strong> {{ principal.preferred_username or 'Not provided' }}</p>
    <p><strong>User ID:</strong> {{ principal.subject }}</p>
    <p><strong>Groups:</strong> {{ principal.groups | join(', ') if principal.groups else 'None' }}</p>
  </div>
  <div>
    <a href="{{ protected_url }}" class="btn protected-btn">Test Protected Route</a>
    <a href="{{ logout_url }}" class="btn logout-btn">Logout</a>
  </div>
  <div style="margin-top: 30px;">
    <h3>Claims:</h3>
    <pre>{{ claims }}</pre>
  </div>
</body>
</html>
"""

ERROR_PAGE = """<!DOCTYPE html>
<html>
<head>
  <title>Authentication Error</title>
  <style>{{ style }}</style>
</head>
<body class="centered">
  <div class="panel error">
    <h1>Authentication Failed</h1>
    <p>There was an error during the authentication process.</p>
    <p>Please check your identity provider configuration and try again.</p>
  </div>
  <a href="/" class="btn retry-btn">Try Again</a>
</body>
</html>
"""
