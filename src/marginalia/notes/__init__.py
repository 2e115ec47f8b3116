"""Notes domain — scopes, URL contexts and storage keys.

A note belongs to one of four scopes:

    browser     everywhere
    domain      example.com (last two hostname labels)
    subdomain   app.example.com (full hostname)
    page        app.example.com/dashboard

`context` turns a URL into a `UrlContext`, `keys` maps (scope, context) to
the local-cache and remote-store key dialects.
"""
