"""
Transaction Categorization Service

Assigns a category and a 0-100 confidence score to a transaction by walking a
cascade of strategies, first match wins:

1. User-learned regex rules (highest priority first)       -> 95
2. Built-in merchant keyword patterns                       -> 75-90
3. The category suggested by Plaid                          -> 70
4. Local LLM (optional)                                     -> 80
5. "Uncategorized"                                          -> 0

Transactions scoring below REVIEW_THRESHOLD are flagged for manual review.
Manual corrections are turned into user rules so the next import gets them right.
"""
import logging
import re
import uuid
from typing import Dict, List, NamedTuple, Optional, Sequence

from sqlalchemy import or_
from sqlalchemy.orm import Session

from budget_app.database.models import Category, CategorizationRule
from budget_app.database.seed import SYSTEM_CATEGORIES, UNCATEGORIZED
from budget_app.models.schemas import CategoryCreate
from budget_app.services.exceptions import NotFoundError, ValidationError
from budget_app.services.llm_categorizer import LLMCategorizationService, get_llm_service

logger = logging.getLogger(__name__)

REVIEW_THRESHOLD = 70
USER_RULE_CONFIDENCE = 95
PLAID_CATEGORY_CONFIDENCE = 70
LLM_CONFIDENCE = 80
MANUAL_CONFIDENCE = 100
FIRST_RULE_PRIORITY = 100

# (pattern, system category, confidence); checked in order
MERCHANT_PATTERNS = [
    (r'walmart|target|costco|kroger|safeway|whole foods|publix|trader joe', 'Groceries', 85),
    (r'shell|chevron|exxon|\bbp\b|\bgas\b|fuel|marathon|speedway|circle k', 'Gas & Fuel', 85),
    (r'chick-fil-a|chick fil a|sonic|mcdonald|burger king|wendy|taco bell|subway|chipotle|panera', 'Dining', 90),
    (r'starbucks|coffee|cafe|dunkin|dutch bros', 'Dining', 85),
    (r'restaurant|pizza|burger|food|dining|grill|kitchen|bistro', 'Dining', 75),
    (r'amazon|ebay|etsy|apple|one apple', 'Shopping', 80),
    (r'netflix|spotify|hulu|disney|apple music|youtube|hbo', 'Entertainment', 90),
    (r'uber|lyft|taxi|transit|auto shop|mechanic', 'Transportation', 85),
    (r'duke energy|piedmont|natural gas|electric|water|utility|power|energy', 'Utilities', 90),
    (r'at&t|verizon|t-mobile|sprint|comcast|xfinity|internet|phone|cable', 'Bills & Payments', 90),
    (r'pharmacy|cvs|walgreens|doctor|hospital|medical|health|clinic', 'Healthcare', 85),
    (r'gym|fitness|yoga|sports|planet fitness|la fitness', 'Health & Fitness', 85),
    (r'charity|donation|young life|church|nonprofit', 'Gifts & Donations', 80),
    (r'betterment|vanguard|fidelity|schwab|investment|bank', 'Bills & Payments', 80),
]
_COMPILED_MERCHANT_PATTERNS = [
    (re.compile(pattern, re.IGNORECASE), category, confidence)
    for pattern, category, confidence in MERCHANT_PATTERNS
]

# Plaid category (legacy hierarchy names and personal finance primaries) -> system category
PLAID_CATEGORY_MAP = {
    'Food and Drink': 'Dining',
    'Restaurants': 'Dining',
    'Groceries': 'Groceries',
    'Gas Stations': 'Gas & Fuel',
    'Transportation': 'Transportation',
    'Travel': 'Travel',
    'Entertainment': 'Entertainment',
    'Shopping': 'Shopping',
    'Healthcare': 'Healthcare',
    'Utilities': 'Utilities',
    'Rent': 'Housing',
    'Mortgage': 'Housing',
    'FOOD_AND_DRINK': 'Dining',
    'TRANSPORTATION': 'Transportation',
    'TRAVEL': 'Travel',
    'ENTERTAINMENT': 'Entertainment',
    'GENERAL_MERCHANDISE': 'Shopping',
    'MEDICAL': 'Healthcare',
    'RENT_AND_UTILITIES': 'Utilities',
    'PERSONAL_CARE': 'Personal Care',
    'INCOME': 'Income',
}

_CORPORATE_SUFFIX_RE = re.compile(r'\s+(inc|llc|ltd|corp|co|store|#\d+)\.?$', re.IGNORECASE)


class CategorizationResult(NamedTuple):
    category_id: str
    confidence: int
    source: str


def needs_review(confidence: Optional[int]) -> bool:
    """Low-confidence categorizations are surfaced for manual review."""
    return (confidence or 0) < REVIEW_THRESHOLD


def build_merchant_pattern(merchant: str) -> str:
    """
    Turn a merchant name into an anchored, case-insensitive rule pattern.

    "Joe's Coffee Inc." -> "^Joe's\\ Coffee"
    """
    clean_name = _CORPORATE_SUFFIX_RE.sub('', merchant.strip()).strip()
    return '^' + re.escape(clean_name)


def _rule_matches(pattern: str, text: str) -> bool:
    try:
        return re.search(pattern, text, re.IGNORECASE) is not None
    except re.error as e:
        logger.warning("Skipping invalid categorization rule pattern %r: %s", pattern, e)
        return False


class CategorizationService:
    def __init__(self, session: Session, llm_service: Optional[LLMCategorizationService] = None):
        self.session = session
        self._llm_service = llm_service
        self._system_categories: Dict[str, Category] = {}

    @property
    def llm_service(self) -> LLMCategorizationService:
        if self._llm_service is None:
            self._llm_service = get_llm_service()
        return self._llm_service

    # Category lookups

    def get_system_category(self, name: str) -> Optional[Category]:
        if name not in self._system_categories:
            category = (
                self.session.query(Category)
                .filter(Category.name == name, Category.is_system.is_(True))
                .first()
            )
            if category is None:
                return None
            self._system_categories[name] = category
        return self._system_categories[name]

    def get_default_category(self) -> Category:
        """Return the "Uncategorized" system category, creating it when missing."""
        category = self.get_system_category(UNCATEGORIZED)
        if category is None:
            icon, color = SYSTEM_CATEGORIES[UNCATEGORIZED]
            category = Category(
                id=str(uuid.uuid4()),
                user_id=None,
                name=UNCATEGORIZED,
                icon=icon,
                color=color,
                is_system=True,
            )
            self.session.add(category)
            self.session.flush()
            self._system_categories[UNCATEGORIZED] = category
        return category

    def get_categories(self, user_id: str) -> List[Category]:
        """System categories plus the user's own, ordered by name."""
        return (
            self.session.query(Category)
            .filter(or_(Category.is_system.is_(True), Category.user_id == user_id))
            .order_by(Category.name)
            .all()
        )

    def get_accessible_category(self, user_id: str, category_id: str) -> Category:
        category = (
            self.session.query(Category)
            .filter(
                Category.id == category_id,
                or_(Category.is_system.is_(True), Category.user_id == user_id),
            )
            .first()
        )
        if category is None:
            raise NotFoundError("Category not found")
        return category

    def create_category(self, user_id: str, data: CategoryCreate) -> Category:
        duplicate = (
            self.session.query(Category)
            .filter(
                Category.name == data.name,
                or_(Category.is_system.is_(True), Category.user_id == user_id),
            )
            .first()
        )
        if duplicate:
            raise ValidationError(f"Category '{data.name}' already exists")
        if data.parent_category_id:
            self.get_accessible_category(user_id, data.parent_category_id)

        category = Category(
            id=str(uuid.uuid4()),
            user_id=user_id,
            name=data.name,
            icon=data.icon,
            color=data.color,
            parent_category_id=data.parent_category_id,
            is_system=False,
        )
        self.session.add(category)
        self.session.flush()
        return category

    # Cascade

    def categorize(
        self,
        user_id: str,
        description: str,
        merchant_name: Optional[str] = None,
        plaid_category: Optional[Sequence[str]] = None,
        amount: float = 0.0,
    ) -> CategorizationResult:
        text = merchant_name or description or ""

        result = (
            self._match_user_rules(user_id, text)
            or self._match_merchant_patterns(text)
            or self._match_plaid_category(plaid_category)
            or self._categorize_with_llm(user_id, text, amount)
        )
        if result:
            return result

        return CategorizationResult(self.get_default_category().id, 0, "default")

    def _match_user_rules(self, user_id: str, text: str) -> Optional[CategorizationResult]:
        if not text:
            return None
        rules = (
            self.session.query(CategorizationRule)
            .filter(CategorizationRule.user_id == user_id)
            .order_by(CategorizationRule.priority.desc(), CategorizationRule.created_at.desc())
            .all()
        )
        for rule in rules:
            if _rule_matches(rule.merchant_pattern, text):
                return CategorizationResult(rule.category_id, USER_RULE_CONFIDENCE, "user_rule")
        return None

    def _match_merchant_patterns(self, text: str) -> Optional[CategorizationResult]:
        if not text:
            return None
        for pattern, category_name, confidence in _COMPILED_MERCHANT_PATTERNS:
            if pattern.search(text):
                category = self.get_system_category(category_name)
                if category:
                    return CategorizationResult(category.id, confidence, "merchant_pattern")
        return None

    def _match_plaid_category(self, plaid_category: Optional[Sequence[str]]) -> Optional[CategorizationResult]:
        if not plaid_category:
            return None
        # Plaid categories are hierarchical; the last one is the most specific
        mapped_name = PLAID_CATEGORY_MAP.get(plaid_category[-1])
        if mapped_name:
            category = self.get_system_category(mapped_name)
            if category:
                return CategorizationResult(category.id, PLAID_CATEGORY_CONFIDENCE, "plaid")
        return None

    def _categorize_with_llm(self, user_id: str, text: str, amount: float) -> Optional[CategorizationResult]:
        if not text or not self.llm_service.enabled:
            return None
        categories = [c for c in self.get_categories(user_id) if c.name != UNCATEGORIZED]
        suggested = self.llm_service.categorize(text, amount, [c.name for c in categories])
        if suggested:
            for category in categories:
                if category.name == suggested:
                    return CategorizationResult(category.id, LLM_CONFIDENCE, "llm")
        return None

    # Rules

    def learn_from_correction(self, user_id: str, merchant: str, category_id: str) -> Optional[CategorizationRule]:
        """Create or strengthen the user rule for a manually recategorized merchant."""
        if not merchant or not merchant.strip():
            return None

        pattern = build_merchant_pattern(merchant)
        rule = (
            self.session.query(CategorizationRule)
            .filter(
                CategorizationRule.user_id == user_id,
                CategorizationRule.merchant_pattern == pattern,
            )
            .first()
        )

        if rule:
            rule.category_id = category_id
            rule.priority = rule.priority + 1
        else:
            rule = CategorizationRule(
                id=str(uuid.uuid4()),
                user_id=user_id,
                merchant_pattern=pattern,
                category_id=category_id,
                priority=self._next_priority(user_id),
                learned_from_user=True,
            )
            self.session.add(rule)

        self.session.flush()
        logger.info("Learned categorization rule %s for user %s", pattern, user_id)
        return rule

    def _next_priority(self, user_id: str) -> int:
        highest = (
            self.session.query(CategorizationRule)
            .filter(CategorizationRule.user_id == user_id)
            .order_by(CategorizationRule.priority.desc())
            .first()
        )
        return highest.priority + 1 if highest else FIRST_RULE_PRIORITY

    def get_rules(self, user_id: str) -> List[CategorizationRule]:
        return (
            self.session.query(CategorizationRule)
            .filter(CategorizationRule.user_id == user_id)
            .order_by(CategorizationRule.priority.desc())
            .all()
        )

    def create_rule(
        self,
        user_id: str,
        merchant_pattern: str,
        category_id: str,
        priority: Optional[int] = None,
    ) -> CategorizationRule:
        try:
            re.compile(merchant_pattern)
        except re.error as e:
            raise ValidationError(f"Invalid merchant pattern: {e}")
        self.get_accessible_category(user_id, category_id)

        rule = CategorizationRule(
            id=str(uuid.uuid4()),
            user_id=user_id,
            merchant_pattern=merchant_pattern,
            category_id=category_id,
            priority=priority if priority is not None else self._next_priority(user_id),
            learned_from_user=False,
        )
        self.session.add(rule)
        self.session.flush()
        return rule

    def delete_rule(self, user_id: str, rule_id: str) -> None:
        rule = (
            self.session.query(CategorizationRule)
            .filter(CategorizationRule.id == rule_id, CategorizationRule.user_id == user_id)
            .first()
        )
        if rule is None:
            raise NotFoundError("Categorization rule not found")
        self.session.delete(rule)
        self.session.flush()
