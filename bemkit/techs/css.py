"""
CSS technology.

Creates an empty rule for the entity and builds bundles of ``@import``
statements, one per source file, in declaration order.
"""

from bemkit import naming
from bemkit.tech import Tech as BaseTech


class Tech(BaseTech):
    suffixes = (".css",)

    def get_create_result(self, path, suffix, entity):
        return f".{naming.build_entity_name(entity)}\n{{\n}}\n"

    def get_build_result_chunk(self, rel_path, path, suffix):
        return f"@import url({rel_path});\n"
