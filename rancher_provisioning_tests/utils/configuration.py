"""Rancher server and test environment configuration."""

import os
import pathlib as pl

LAUNCH_PATH = pl.Path.cwd()

IS_XDIST = bool(os.environ.get("PYTEST_XDIST_TESTRUNUID"))

# Rancher server under test. Live tests are skipped when the host is not set.
RANCHER_HOST = (os.environ.get("RANCHER_HOST") or "").rstrip("/")
if RANCHER_HOST and "://" not in RANCHER_HOST:
    RANCHER_HOST = f"https://{RANCHER_HOST}"
RANCHER_ADMIN_TOKEN = os.environ.get("RANCHER_ADMIN_TOKEN") or ""
RANCHER_INSECURE = (os.environ.get("RANCHER_INSECURE") or "") != ""

# Path to the YAML (or JSON) file with the provisioning input
CATTLE_TEST_CONFIG: str | pl.Path = os.environ.get("CATTLE_TEST_CONFIG") or ""
if CATTLE_TEST_CONFIG:
    CATTLE_TEST_CONFIG = pl.Path(CATTLE_TEST_CONFIG).expanduser().resolve()

# Kubernetes distribution of the custom clusters, used only for skipping inapplicable tests
DIST = (os.environ.get("DIST") or "").lower()
if DIST not in ("", "k3s", "rke2"):
    msg = f"Invalid DIST: {DIST}"
    raise RuntimeError(msg)

# Version of system agent that Rancher is expected to advertise
CATTLE_SYSTEM_AGENT_VERSION = os.environ.get("CATTLE_SYSTEM_AGENT_VERSION") or ""

# Server-side timeout of the watch on cluster objects
WATCH_TIMEOUT_SECONDS = int(os.environ.get("WATCH_TIMEOUT_SECONDS") or 1800)
if WATCH_TIMEOUT_SECONDS <= 0:
    msg = f"Invalid WATCH_TIMEOUT_SECONDS '{WATCH_TIMEOUT_SECONDS}': must be > 0"
    raise RuntimeError(msg)

# Namespace where provisioning clusters and machine configs are created
NAMESPACE = os.environ.get("NAMESPACE") or "fleet-default"

# Image of the simulated nodes, it runs the bootstrap script under systemd
SYSTEMD_NODE_IMAGE = os.environ.get("SYSTEMD_NODE_IMAGE") or "rancher/systemd-node:v0.0.4"

# Max number of simulated nodes launched in parallel for a single cluster
NODE_LAUNCH_WORKERS = int(os.environ.get("NODE_LAUNCH_WORKERS") or 5)

# Resolve SESSION_LOG
SESSION_LOG: str | pl.Path = os.environ.get("SESSION_LOG") or ""
if SESSION_LOG:
    SESSION_LOG = pl.Path(SESSION_LOG).expanduser().resolve()

# Keep clusters and nodes after the test finished, for debugging
KEEP_RESOURCES = bool(os.environ.get("KEEP_RESOURCES"))

# Kubernetes version of custom clusters, the server default is used when not set
CUSTOM_KUBERNETES_VERSION = os.environ.get("SOME_K8S_VERSION") or ""
