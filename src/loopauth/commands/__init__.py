"""Built-in CLI sub-command groups for loopauth.

* :mod:`~loopauth.commands.config` -- view and modify global settings
  (redirect URI, timeout, and the pages shown in the browser).

The single-shot commands (``authorize``, ``listen``, ``open``,
``redirect-uri``, ``result``) are registered directly on the root app in
:mod:`loopauth.app`.
"""
