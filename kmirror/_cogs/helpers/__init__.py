"""
General-purpose helpers not related to the mirroring itself
(neither to the reactor nor to the clients nor to the structs),
which are used to prepare and control the runtime environment.

Helpers do not depend on anything else in the package.
"""
