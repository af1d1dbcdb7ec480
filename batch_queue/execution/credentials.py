"""
Amazon credentials file parsing.

Expected format:

    [Credentials]
    aws_access_key_id = AKIA...
    aws_secret_access_key = ...
"""

from pydantic import BaseModel

from batch_queue.core.exceptions import ConfigurationError, CredentialFormatError

CREDENTIALS_HEADER = "[Credentials]"


class AmazonCredentials(BaseModel):
    access_key_id: str
    secret_access_key: str

    def as_env(self) -> dict:
        """Environment variables read by the EC2 command line tools."""
        return {
            "AWS_ACCESS_KEY": self.access_key_id,
            "AWS_SECRET_KEY": self.secret_access_key,
        }


def _value_of(line: str, path: str) -> str:
    tokens = line.split()
    if len(tokens) != 3:
        raise CredentialFormatError(
            f"Credentials file {path} not in the correct format: "
            f"expected 'key = value', got {len(tokens)} tokens"
        )
    # Only the value is significant, the key name is not checked
    return tokens[2]


def parse_credentials(text: str, path: str = "<string>") -> AmazonCredentials:
    """
    Parse the contents of an amazon credentials file.

    Raises:
        CredentialFormatError: If the header or either key line is malformed
    """
    lines = [line for line in text.splitlines() if line.strip()]
    if not lines or lines[0].split()[0] != CREDENTIALS_HEADER:
        raise CredentialFormatError(
            f"Credentials file {path} not in the correct format: "
            f"missing {CREDENTIALS_HEADER} header"
        )
    if len(lines) < 3:
        raise CredentialFormatError(
            f"Credentials file {path} not in the correct format: "
            "expected access key id and secret access key lines"
        )

    return AmazonCredentials(
        access_key_id=_value_of(lines[1], path),
        secret_access_key=_value_of(lines[2], path),
    )


def load_credentials(path: str) -> AmazonCredentials:
    """Read and parse an amazon credentials file."""
    try:
        with open(path) as f:
            text = f.read()
    except OSError as e:
        raise ConfigurationError(
            f"Amazon credentials file {path} could not be opened: {e}"
        ) from e

    return parse_credentials(text, path)
