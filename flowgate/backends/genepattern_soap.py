"""
GenePattern SOAP webservice client.

Used for GenePattern servers reached over https. Jobs are submitted through
the ``Analysis`` webservice's ``submitJob`` operation with a typed parameter
list; status and results go through the REST projection inherited from
``GenePatternRestClient``.
"""

from typing import Any, Dict, List, Optional

import requests
import xmltodict

from flowgate.backends.genepattern_rest import GenePatternRestClient
from flowgate.core.exceptions import SubmissionError
from flowgate.core.schemas.catalog import AnalysisServer, Credentials, Module
from flowgate.core.schemas.parameters import ResolvedParameters
from flowgate.core.server_registry import BackendKind
from flowgate.utils.logger import get_logger

logger = get_logger(__name__)

SOAP_ENV_NS = "http://schemas.xmlsoap.org/soap/envelope/"
ANALYSIS_NS = "Analysis"


def _local_name(key: str) -> str:
    return key.split(":", 1)[-1]


def find_element(node: Any, name: str) -> Optional[Any]:
    """Depth-first search for the first element with local name ``name``."""
    if isinstance(node, dict):
        for key, value in node.items():
            if key.startswith("@"):
                continue
            if _local_name(key) == name:
                return value
            found = find_element(value, name)
            if found is not None:
                return found
    elif isinstance(node, list):
        for item in node:
            found = find_element(item, name)
            if found is not None:
                return found
    return None


def _is_http_failure_without_fault(response: requests.Response) -> bool:
    # faults come back as 500 with a SOAP body
    return response.status_code >= 400 and "Fault" not in response.text


def _text(value: Any) -> Optional[str]:
    if isinstance(value, dict):
        value = value.get("#text")
    return None if value is None else str(value).strip()


class GenePatternSoapClient(GenePatternRestClient):
    """Client for GenePattern servers reached over the SOAP webservice."""

    kind = BackendKind.GENEPATTERN_SOAP

    SERVICE_PATH = "/gp/services/Analysis"

    def build_envelope(
        self, task_id: str, param_list: List[Dict[str, Any]]
    ) -> str:
        """Render the ``submitJob`` SOAP envelope."""
        parm_infos = []
        for param in param_list:
            for value in param["values"] or [""]:
                parm_infos.append(
                    {
                        "name": param["name"],
                        "value": value,
                        "inputFile": "true" if param["is_file"] else "false",
                    }
                )

        document = {
            "soapenv:Envelope": {
                "@xmlns:soapenv": SOAP_ENV_NS,
                "@xmlns:ana": ANALYSIS_NS,
                "soapenv:Header": None,
                "soapenv:Body": {
                    "ana:submitJob": {
                        "ana:taskID": task_id,
                        "ana:parameters": {"ana:ParmInfo": parm_infos},
                    }
                },
            }
        }
        return xmltodict.unparse(document)

    def parse_job_number(self, body: str) -> str:
        """
        Extract the job number from a ``submitJob`` response.

        Raises:
            SubmissionError: On a SOAP fault or a malformed response
        """
        try:
            document = xmltodict.parse(body)
        except Exception as e:
            raise SubmissionError(
                f"Malformed SOAP response: {e}", {"error_type": type(e).__name__}
            ) from e

        fault = find_element(document, "Fault")
        if fault is not None:
            fault_string = _text(find_element(fault, "faultstring")) or "SOAP fault"
            raise SubmissionError(fault_string, {"fault": fault_string})

        job_number = _text(find_element(document, "jobNumber"))
        if not job_number:
            raise SubmissionError("SOAP response carries no job number")
        return job_number

    def submit(
        self,
        server: AnalysisServer,
        module: Module,
        parameters: ResolvedParameters,
        credentials: Credentials,
    ) -> str:
        param_list = [
            {
                "name": p.key,
                "values": self.submission_values(server, p, credentials),
                "is_file": p.is_file or p.generated is not None,
            }
            for p in parameters
        ]
        envelope = self.build_envelope(module.name, param_list)

        headers = self.auth_headers(credentials)
        headers.update({"Content-Type": "text/xml; charset=utf-8", "SOAPAction": ""})

        response = self._request(
            "POST",
            f"{server.url}{self.SERVICE_PATH}",
            headers=headers,
            error_cls=SubmissionError,
            is_failure=_is_http_failure_without_fault,
            data=envelope.encode("utf-8"),
        )
        job_number = self.parse_job_number(response.text)
        logger.info(f"Submitted {module.name} to {server.name} as job {job_number}")
        return job_number
