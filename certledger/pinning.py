import json
import logging
import datetime
from dataclasses import dataclass

import requests

from certledger.errors import InvalidCID, StorageUnavailable
from certledger.models import PINATA_GATEWAY, PUBLIC_GATEWAY

PINATA_PIN_FILE_URL = "https://api.pinata.cloud/pinning/pinFileToIPFS"


@dataclass(frozen=True)
class PinResult:
    cid: str
    size: int = 0
    timestamp: str = ""


class PinataPinner:
    """Pins certificate files to IPFS through the Pinata API and returns their CID."""

    def __init__(self, jwt=None, api_key=None, api_secret=None, timeout=60, url=PINATA_PIN_FILE_URL):
        self.jwt = jwt
        self.api_key = api_key
        self.api_secret = api_secret
        self.timeout = timeout
        self.url = url

    @property
    def configured(self) -> bool:
        return bool(self.jwt or (self.api_key and self.api_secret))

    def headers(self):
        if self.jwt:
            return {"Authorization": f"Bearer {self.jwt}"}
        return {"pinata_api_key": self.api_key, "pinata_secret_api_key": self.api_secret}

    def pin(self, data: bytes, filename: str) -> PinResult:
        if not self.configured:
            raise StorageUnavailable("Missing Pinata credentials")

        metadata = {
            "name": filename,
            "keyvalues": {
                "type": "certificate",
                "uploadedAt": datetime.datetime.now(datetime.timezone.utc).isoformat(),
            },
        }
        try:
            response = requests.post(
                self.url,
                files={"file": (filename, data, "application/pdf")},
                data={
                    "pinataMetadata": json.dumps(metadata),
                    "pinataOptions": json.dumps({"cidVersion": 1}),
                },
                headers=self.headers(),
                timeout=self.timeout,
            )
            response.raise_for_status()
            body = response.json()
        except (requests.RequestException, ValueError) as e:
            logging.error(f"Pinata error: {e}")
            raise StorageUnavailable(f"IPFS upload failed: {e}")

        if not body.get("IpfsHash"):
            raise StorageUnavailable("IPFS upload failed: no CID in response")
        logging.info(f"IPFS: {body['IpfsHash']}")
        return PinResult(cid=body["IpfsHash"], size=body.get("PinSize", 0), timestamp=body.get("Timestamp", ""))


def pinner_from_config(config):
    return PinataPinner(
        jwt=config.get("PINATA_JWT"),
        api_key=config.get("PINATA_API_KEY"),
        api_secret=config.get("PINATA_API_SECRET"),
    )


def fetch_file(cid, timeout=30):
    """Downloads a pinned file, trying the Pinata gateway before the public one."""
    if not cid or len(cid) < 10:
        raise InvalidCID()

    for gateway in (PINATA_GATEWAY, PUBLIC_GATEWAY):
        try:
            response = requests.get(gateway + cid, timeout=timeout)
            response.raise_for_status()
            return response.content
        except requests.RequestException as e:
            logging.warning(f"Gateway {gateway} failed for {cid}: {e}")
    raise StorageUnavailable("Failed to download certificate from IPFS")
