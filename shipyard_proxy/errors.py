from fastapi import HTTPException


class RoutingError(HTTPException):
    """Request could not be mapped to a tenant folder."""
    status_code = 400

    def __init__(self, detail: str):
        super().__init__(status_code=self.status_code, detail=detail)


class MissingTenant(RoutingError):
    def __init__(self):
        super().__init__('Project ID missing in path.')


class InvalidTenant(RoutingError):
    def __init__(self, tenant: str):
        self.tenant = tenant
        super().__init__(f'Invalid project ID: {tenant!r}')


class UnsafePath(RoutingError):
    def __init__(self, path: str):
        self.path = path
        super().__init__(f'Invalid path: {path!r}')
