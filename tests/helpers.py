"""Shared test helpers: payload encryption and a scripted generation client."""

from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from pipeline.schemas.leads import Classification, Extraction, Qualification

TEST_KEY = "0123456789abcdef" * 4


def encrypt(plaintext: str, key_hex: str = TEST_KEY, nonce: bytes = b"\x01" * 12) -> dict:
    """Produce the hex triple the message producer writes."""
    sealed = AESGCM(bytes.fromhex(key_hex)).encrypt(nonce, plaintext.encode("utf-8"), None)
    return {
        "encrypted_body": sealed[:-16].hex(),
        "iv": nonce.hex(),
        "auth_tag": sealed[-16:].hex(),
    }


class ScriptedGeneration:
    """
    Stand-in for GenerationClient. Returns a fixed response per result shape
    (None as a response means the service is unavailable).
    """

    def __init__(
        self,
        classification=Classification(is_lead=True, intent="study_visa"),
        qualification=Qualification(is_qualified=False, priority="Low"),
        extraction=Extraction(),
        reply="A study visa requires an offer letter and proof of funds.",
    ):
        self.responses = {
            Classification: classification,
            Qualification: qualification,
            Extraction: extraction,
            None: reply,
        }
        self.calls = []

    async def generate(self, system_instruction, user_content, shape=None):
        self.calls.append((shape, system_instruction, user_content))
        return self.responses[shape]

    def calls_for(self, shape):
        return [call for call in self.calls if call[0] is shape]
