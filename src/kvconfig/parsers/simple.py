"""
Single opaque value parser.

Treats the whole payload as one string value with an anonymous key, so
the configuration key comes entirely from the entry's path. With root
"app" and an entry "app/db/host" holding "db1", the result is
"db:host" = "db1".
"""

import kvconfig.errors as errors


class SimpleConfigurationParser:
    """Returns the payload text under the empty key."""

    name = "simple"

    def parse(self, data: bytes) -> dict[str, str | None]:
        try:
            return {"": data.decode("utf-8")}
        except UnicodeDecodeError as e:
            raise errors.FlatteningError(f"payload is not valid UTF-8: {e}") from e

    def __repr__(self) -> str:
        return "SimpleConfigurationParser()"
