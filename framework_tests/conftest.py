import os

# The harness is tested offline, make sure no live system or local settings leak in
for _var in (
    "RANCHER_HOST",
    "RANCHER_ADMIN_TOKEN",
    "CATTLE_TEST_CONFIG",
    "KEEP_RESOURCES",
    "SESSION_LOG",
    "NAMESPACE",
    "WATCH_TIMEOUT_SECONDS",
    "DIST",
):
    os.environ.pop(_var, None)
