from pydantic_settings import BaseSettings, SettingsConfigDict


class OperatorSettings(BaseSettings):
    """Operator node settings, prefixed with OPERATOR_"""

    HOST: str = "0.0.0.0"
    PORT: int = 8081
    # Secret URI or mnemonic of the key that signs completed tasks
    SIGNER_URI: str = "//Bob"
    # URL the aggregator should use to reach this node (registered as the operator endpoint)
    PUBLIC_ENDPOINT: str = "http://127.0.0.1:8081/operator"
    LOG_LEVEL: str = "INFO"

    model_config = SettingsConfigDict(env_prefix='OPERATOR_', env_file='.env', extra='ignore')
