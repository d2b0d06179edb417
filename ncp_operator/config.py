"""
Operator configuration (overridable via env for local vs in-cluster runs).
"""

import os

# ---------------------------------------------------------------------------
# Managed resources
# ---------------------------------------------------------------------------
NSX_NAMESPACE = os.environ.get("NSX_NAMESPACE", "nsx-system")
NCP_DEPLOYMENT_NAME = os.environ.get("NCP_DEPLOYMENT_NAME", "nsx-ncp")
NODE_AGENT_DS_NAME = os.environ.get("NODE_AGENT_DS_NAME", "nsx-node-agent")
BOOTSTRAP_DS_NAME = os.environ.get("BOOTSTRAP_DS_NAME", "nsx-ncp-bootstrap")
NODE_AGENT_CONTAINER_NAME = os.environ.get("NODE_AGENT_CONTAINER_NAME", "nsx-node-agent")

# ---------------------------------------------------------------------------
# Shared configuration sources
# ---------------------------------------------------------------------------
OPERATOR_NAMESPACE = os.environ.get("OPERATOR_NAMESPACE", "nsx-system-operator")
MANIFESTS_CONFIGMAP = os.environ.get("MANIFESTS_CONFIGMAP", "nsx-ncp-operator-manifests")

# Umbrella object that every recreated resource is owned by
NETWORK_CONFIG_GROUP = os.environ.get("NETWORK_CONFIG_GROUP", "config.openshift.io")
NETWORK_CONFIG_VERSION = os.environ.get("NETWORK_CONFIG_VERSION", "v1")
NETWORK_CONFIG_PLURAL = os.environ.get("NETWORK_CONFIG_PLURAL", "networks")
NETWORK_CONFIG_NAME = os.environ.get("NETWORK_CONFIG_NAME", "cluster")

CLUSTER_OPERATOR_GROUP = "config.openshift.io"
CLUSTER_OPERATOR_VERSION = "v1"
CLUSTER_OPERATOR_PLURAL = "clusteroperators"
CLUSTER_OPERATOR_NAME = os.environ.get("CLUSTER_OPERATOR_NAME", "nsx-ncp")

# ---------------------------------------------------------------------------
# Reconciliation
# ---------------------------------------------------------------------------
RESYNC_PERIOD = float(os.environ.get("RESYNC_PERIOD", "120"))
WORKERS = int(os.environ.get("NCP_OPERATOR_WORKERS", "2"))

# Crash-loop remediation of node-agent pods
CRASH_LOOP_REASON = "CrashLoopBackOff"
LOG_TAIL_LINES = int(os.environ.get("LOG_TAIL_LINES", "50"))
POD_DELETE_GRACE_SECONDS = int(os.environ.get("POD_DELETE_GRACE_SECONDS", "5"))
POD_DELETE_PROPAGATION = "Foreground"
DNS_FAILURE_SIGNATURE = os.environ.get(
    "DNS_FAILURE_SIGNATURE",
    "Failed to establish a new connection: [Errno -2] Name or service not known",
)

# ---------------------------------------------------------------------------
# Observability
# ---------------------------------------------------------------------------
METRICS_PORT = int(os.environ.get("METRICS_PORT", "9090"))
REDIS_URL = os.environ.get("REDIS_URL", "")
EVENT_STREAM_KEY = "ncp:events"
EVENT_STREAM_MAXLEN = 200

KUBECONFIG = os.environ.get("KUBECONFIG", "")
