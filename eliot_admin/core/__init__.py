"""Pure text and SQL helpers plus logging setup."""
