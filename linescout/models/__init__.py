from linescout.models.user import User
from linescout.models.refresh_token import RefreshToken
from linescout.models.audit_log import AuditLog
from linescout.models.rates import FxRate, PlatformSettings, ShippingCompany, ShippingRate, ShippingType
from linescout.models.handoff import (
    CommitmentPayment,
    Handoff,
    HandoffClaimAudit,
    HandoffFinancial,
    HandoffPayment,
    HandoffStatusEvent,
)
from linescout.models.quote import Quote, QuotePayment
from linescout.models.wallet import ProviderTransaction, VirtualAccount, Wallet, WalletTransaction
from linescout.models.payments import (
    PaymentProviderOverride,
    PaymentSettings,
    PayoutAccount,
    PayoutRequest,
    UserPayoutAccount,
    UserPayoutRequest,
)
from linescout.models.notification import Notification
