"""HTTP session shared by all Rancher API clients of a worker."""

import functools

import requests
import urllib3
from requests import adapters

from rancher_provisioning_tests.utils import configuration

# Retry only idempotent requests on connection errors and gateway hiccups
RETRY = urllib3.Retry(
    total=3,
    backoff_factor=1,
    status_forcelist=(502, 503, 504),
    allowed_methods=frozenset({"GET", "HEAD", "DELETE"}),
    raise_on_status=False,
)


@functools.cache
def get_session() -> requests.Session:
    session = requests.Session()
    session.mount("https://", adapters.HTTPAdapter(max_retries=RETRY))
    session.mount("http://", adapters.HTTPAdapter(max_retries=RETRY))

    if configuration.RANCHER_INSECURE:
        session.verify = False
        urllib3.disable_warnings(urllib3.exceptions.InsecureRequestWarning)

    return session
