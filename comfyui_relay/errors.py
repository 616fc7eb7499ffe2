class RelayError(Exception):
    """Base error for a relayed workflow request. Carries the HTTP status it maps to."""

    status_code = 500


class InvalidWorkflowError(RelayError):
    status_code = 400


class MissingNodeError(RelayError):
    status_code = 400

    def __init__(self, node_id: str, description: str):
        super().__init__(f"{description} node is missing")
        self.node_id = node_id


class ComfyConnectionError(RelayError):
    pass


class ComfyResponseError(RelayError):
    pass
