# Register every ORM model so string-based relationships resolve when a
# single test module is run on its own.
import prepx.app.db.base  # noqa: F401
