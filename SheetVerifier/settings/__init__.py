"""
Settings package: configuration API and schema validation.

- :mod:`SheetVerifier.settings.lib` – Settings file management and schema validation.
"""
