"""
bemkit - minimal component-based front-end build framework.

Provides the pieces technology modules are written against: the generic
level (``bemkit.level``), the build context (``bemkit.context``), the base
technology (``bemkit.tech``), the asynchronous filesystem module
(``bemkit.fs``) and the built-in technologies under ``bemkit.techs``.
"""

__version__ = "0.3.0"
