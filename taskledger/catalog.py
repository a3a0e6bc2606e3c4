from .errors import InvalidInputError
from .models import Package, PackageType

DEFAULT_PACKAGES = [
    Package(
        id="starter", name="Starter", type=PackageType.STARTER,
        description="Perfect for beginners looking to grow their social presence.",
        price=2900, tasks_per_month=30,
        features=["30 social tasks per month", "Basic analytics", "Email support"],
    ),
    Package(
        id="professional", name="Professional", type=PackageType.PROFESSIONAL,
        description="Great for active social media influencers and content creators.",
        price=7900, tasks_per_month=100,
        features=["100 social tasks per month", "Advanced analytics", "Priority support", "Exclusive campaigns"],
        is_popular=True,
    ),
    Package(
        id="enterprise", name="Enterprise", type=PackageType.ENTERPRISE,
        description="For businesses and agencies managing multiple accounts.",
        price=19900, tasks_per_month=1000,
        features=["Unlimited social tasks", "Enterprise analytics dashboard", "Dedicated account manager", "API access"],
    ),
]


def list_packages() -> list[Package]:
    return list(DEFAULT_PACKAGES)


def get_package_or_raise(package_id: str) -> Package:
    for package in DEFAULT_PACKAGES:
        if package.id == package_id:
            return package
    raise InvalidInputError(f"Unknown package {package_id!r}")


def reference_price(package_id: str = "starter") -> int:
    return get_package_or_raise(package_id).price
