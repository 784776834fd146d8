"""Models package."""

from .recruiter import Recruiter
from .credit_account import CreditAccount
from .credit_ledger import CreditLedger
from .resume_profile import ResumeProfile
from .unlock_grant import UnlockGrant
from .profile_access_log import ProfileAccessLog
from .bucket import Bucket
from .bucket_item import BucketItem
from .bucket_activity_log import BucketActivityLog
from .saved_search import SavedSearch
from .search_result_sample import SearchResultSample
