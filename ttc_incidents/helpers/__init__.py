"""Pure helpers: route extraction, categorisation, keys and parsers."""
