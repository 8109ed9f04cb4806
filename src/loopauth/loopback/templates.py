"""Built-in pages shown in the browser tab after the callback.

``DEFAULT_FAILURE_HTML_FORMAT`` is a :meth:`str.format` template with three
positional fields (``{0}`` error code, ``{1}`` description, ``{2}`` error
URI); braces belonging to the CSS are doubled.
"""

DEFAULT_SUCCESS_HTML = """<!DOCTYPE html><html><head>
<style>body{font-family:sans-serif;}dt{font-weight:bold;}dd{margin-bottom:10px;}</style>
<title>Authentication successful</title></head>
<body><h1>Authentication successful</h1><p>You can now close this page.</p></body>
</html>"""

DEFAULT_FAILURE_HTML_FORMAT = """<!DOCTYPE html><html><head>
<style>body{{font-family:sans-serif;}}dt{{font-weight:bold;}}dd{{margin-bottom:10px;}}</style>
<title>Authentication failed</title></head>
<body><h1>Authentication failed</h1><dl>
<dt>Error:</dt><dd>{0}</dd>
<dt>Description:</dt><dd>{1}</dd>
<dt>URL:</dt><dd>{2}</dd>
</dl></body></html>"""
