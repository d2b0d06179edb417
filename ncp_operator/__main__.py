"""
Entry point for `python -m ncp_operator`, equivalent to
`kopf run -m ncp_operator.handlers --all-namespaces`.
"""

import kopf

from ncp_operator import handlers  # noqa: F401  (registers the handlers)

kopf.run(clusterwide=True)
