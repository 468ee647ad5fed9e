"""Login and logout commands (OAuth device-code flow)."""

from ..core.config import SyncState
from ..core.exceptions import AuthenticationFailedError
from ..todo.auth import TokenProvider


class LoginCommand:
    """Command for signing in to Microsoft To Do."""

    def __init__(self, state: SyncState, provider: TokenProvider, verbose: bool = False):
        self.state = state
        self.provider = provider
        self.verbose = verbose

    def run(self, client_id: str = "", tenant_id: str = "") -> bool:
        """Run the login command.

        Args:
            client_id: Azure app registration id; stored in settings when given
            tenant_id: Tenant (defaults to the stored one, usually ``common``)

        Returns:
            True if a token was obtained, False otherwise
        """
        settings = self.state.settings
        if client_id:
            settings.client_id = client_id.strip()
        if tenant_id:
            settings.tenant_id = tenant_id.strip()
        if not settings.client_id:
            print("❌ No client id configured. Run 'mtd-sync login --client-id <id>'.")
            return False

        print("🔐 Signing in to Microsoft To Do...")
        try:
            self.provider.login()
        except AuthenticationFailedError as exc:
            print(f"❌ Login failed:\n{exc}")
            return False
        print("✅ Signed in")
        return True


class LogoutCommand:
    """Command for discarding stored tokens."""

    def __init__(self, state: SyncState, provider: TokenProvider, verbose: bool = False):
        self.state = state
        self.provider = provider
        self.verbose = verbose

    def run(self) -> bool:
        if not self.provider.is_logged_in():
            print("Not signed in.")
            return True
        self.provider.logout()
        print("👋 Signed out")
        return True
