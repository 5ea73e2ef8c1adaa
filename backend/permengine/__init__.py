"""permengine: authorization & permission engine.

Decides, for every privileged operation, whether an already-authenticated
principal may perform it.
"""

__version__ = "0.1.0"
