"""Copy-pasteable curl commands reproducing each probe.

The oauth snippet embeds the real client secret. Callers displaying these
snippets must treat them as sensitive.
"""

from typing import Dict, Optional

from ehr_onboarding.healthcare.connection_config import ClientType, ConnectionConfig

TOKEN_PLACEHOLDER = "{TOKEN}"
SECRET_PLACEHOLDER = "{CLIENT_SECRET}"


def generate_curl_snippets(
    config: ConnectionConfig, client_secret: Optional[str] = None
) -> Dict[str, str]:
    """Build probe name -> curl command for a connection.

    Args:
        config: Connection to describe
        client_secret: Plaintext secret to embed in the oauth snippet; a
            placeholder is used when it is not available

    Returns:
        Always ``capability``; ``oauth`` for system clients; ``patient`` when
        a test patient is configured.
    """
    snippets = {
        "capability": (
            f'curl "{config.fhir_base_url}/metadata" \\\n'
            '  -H "Accept: application/fhir+json"'
        )
    }

    if config.client_type == ClientType.SYSTEM:
        secret = client_secret if client_secret is not None else SECRET_PLACEHOLDER
        snippets["oauth"] = (
            f'curl -X POST "{config.token_url}" \\\n'
            '  -H "Content-Type: application/x-www-form-urlencoded" \\\n'
            '  --data-urlencode "grant_type=client_credentials" \\\n'
            f'  --data-urlencode "client_id={config.client_id}" \\\n'
            f'  --data-urlencode "client_secret={secret}" \\\n'
            f'  --data-urlencode "scope={config.scope_string}"'
        )

    if config.test_patient_id:
        snippets["patient"] = (
            f'curl -H "Authorization: Bearer {TOKEN_PLACEHOLDER}" \\\n'
            '  -H "Accept: application/fhir+json" \\\n'
            f'  "{config.fhir_base_url}/Patient/{config.test_patient_id}"'
        )

    return snippets
