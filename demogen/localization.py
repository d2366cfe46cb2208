"""Localized fake-identity providers (names, addresses, phones, companies).

One provider class per supported country, chosen by ``get_provider`` with
the US provider as fallback. Every draw goes through the ``SeededRNG`` the
provider was built with, so the same seed yields the same people.
"""

from __future__ import annotations

import re
from dataclasses import dataclass

from .rng import SeededRNG
from .templates import get_template


@dataclass
class Address:
    street: str
    city: str
    state: str
    postal_code: str
    country: str


@dataclass(frozen=True)
class City:
    name: str
    state: str
    postal_code: str


GENERIC_COMPANY_PATTERNS = (
    "{Word} {Suffix}",
    "{Word} {Word} {Suffix}",
    "{Name} {Suffix}",
    "{Word} Solutions {Suffix}",
    "{Word} Global {Suffix}",
    "{Name} & Associates",
)

DOMAIN_TLDS = ("com", "io", "co", "net")


class LocalizationProvider:
    """Base provider. Subclasses fill in the data tables and phone format."""

    country = ""
    country_name = ""
    timezone = ""
    currency = ""
    phone_prefix = ""

    first_names_male: tuple[str, ...] = ()
    first_names_female: tuple[str, ...] = ()
    last_names: tuple[str, ...] = ()
    cities: tuple[City, ...] = ()
    street_types: tuple[str, ...] = ()
    company_suffixes: tuple[str, ...] = ()
    company_words: tuple[str, ...] = ()
    email_domains: tuple[str, ...] = ()

    def __init__(self, rng: SeededRNG):
        self.rng = rng

    # --- People ---

    def first_name(self, gender: str | None = None) -> str:
        gender = gender or ("male" if self.rng.chance() else "female")
        names = self.first_names_male if gender == "male" else self.first_names_female
        return self.rng.pick(names)

    def last_name(self) -> str:
        return self.rng.pick(self.last_names)

    def full_name(self, gender: str | None = None) -> str:
        return f"{self.first_name(gender)} {self.last_name()}"

    def email(self, first: str, last: str, domain: str | None = None) -> str:
        domain = domain or self.rng.pick(self.email_domains)
        f, l = first.lower(), last.lower()
        local = self.rng.pick((f"{f}.{l}", f"{f}{l}", f"{f[:1]}{l}", f))
        suffix = str(self.rng.randint(1, 99)) if self.rng.chance(0.3) else ""
        return re.sub(r"[^a-z0-9.@]", "", f"{local}{suffix}@{domain}")

    def phone(self) -> str:
        raise NotImplementedError

    # --- Places ---

    def street_address(self) -> str:
        number = self.rng.randint(1, 9999)
        return f"{number} {self.rng.pick(self.last_names)} {self.rng.pick(self.street_types)}"

    def city(self) -> str:
        return self.rng.pick(self.cities).name

    def state(self) -> str:
        return self.rng.pick(self.cities).state

    def postal_code(self) -> str:
        return self.rng.pick(self.cities).postal_code

    def full_address(self) -> Address:
        city = self.rng.pick(self.cities)
        return Address(
            street=self.street_address(),
            city=city.name,
            state=city.state,
            postal_code=city.postal_code,
            country=self.country_name,
        )

    # --- Companies ---

    def company_name(self, industry: str | None = None) -> str:
        patterns = GENERIC_COMPANY_PATTERNS
        if industry and self.rng.chance(0.5):
            patterns = get_template(industry).company_patterns or patterns
        return self._expand_pattern(self.rng.pick(patterns))

    def _expand_pattern(self, pattern: str) -> str:
        out = pattern
        while "{Word}" in out:
            out = out.replace("{Word}", self.rng.pick(self.company_words), 1)
        while "{Name}" in out:
            out = out.replace("{Name}", self.last_name(), 1)
        while "{Suffix}" in out:
            out = out.replace("{Suffix}", self.company_suffix(), 1)
        return out

    def company_suffix(self) -> str:
        return self.rng.pick(self.company_suffixes)

    def company_domain(self, company_name: str) -> str:
        clean = re.sub(r"[^a-z0-9]", "", company_name.lower())[:20] or "company"
        return f"{clean}.{self.rng.pick(DOMAIN_TLDS)}"


def _cities(*rows: tuple[str, str, str]) -> tuple[City, ...]:
    return tuple(City(*r) for r in rows)


class USProvider(LocalizationProvider):
    country = "US"
    country_name = "United States"
    timezone = "America/New_York"
    currency = "USD"
    phone_prefix = "+1"

    first_names_male = (
        "James", "John", "Robert", "Michael", "William", "David", "Richard",
        "Joseph", "Thomas", "Christopher", "Charles", "Daniel", "Matthew",
        "Anthony", "Mark", "Steven", "Paul", "Andrew", "Joshua", "Kevin",
        "Brian", "George", "Ryan", "Jacob", "Eric", "Justin", "Brandon",
        "Benjamin", "Samuel", "Patrick", "Tyler", "Aaron", "Jose",
    )
    first_names_female = (
        "Mary", "Patricia", "Jennifer", "Linda", "Elizabeth", "Barbara",
        "Susan", "Jessica", "Sarah", "Karen", "Lisa", "Nancy", "Margaret",
        "Ashley", "Kimberly", "Emily", "Michelle", "Amanda", "Melissa",
        "Stephanie", "Rebecca", "Laura", "Amy", "Angela", "Anna", "Emma",
        "Nicole", "Samantha", "Katherine", "Rachel", "Maria", "Heather",
    )
    last_names = (
        "Smith", "Johnson", "Williams", "Brown", "Jones", "Garcia", "Miller",
        "Davis", "Rodriguez", "Martinez", "Hernandez", "Lopez", "Gonzalez",
        "Wilson", "Anderson", "Thomas", "Taylor", "Moore", "Jackson", "Martin",
        "Lee", "Thompson", "White", "Harris", "Clark", "Lewis", "Robinson",
        "Walker", "Young", "Allen", "King", "Wright", "Scott", "Hill", "Green",
        "Adams", "Nelson", "Baker", "Hall", "Campbell", "Mitchell", "Carter",
    )
    cities = _cities(
        ("New York", "NY", "10001"),
        ("Los Angeles", "CA", "90001"),
        ("Chicago", "IL", "60601"),
        ("Houston", "TX", "77001"),
        ("Phoenix", "AZ", "85001"),
        ("Philadelphia", "PA", "19101"),
        ("San Diego", "CA", "92101"),
        ("Dallas", "TX", "75201"),
        ("Austin", "TX", "78701"),
        ("Columbus", "OH", "43085"),
        ("Charlotte", "NC", "28201"),
        ("San Francisco", "CA", "94102"),
        ("Seattle", "WA", "98101"),
        ("Denver", "CO", "80201"),
        ("Boston", "MA", "02101"),
        ("Nashville", "TN", "37201"),
        ("Portland", "OR", "97201"),
        ("Miami", "FL", "33101"),
        ("Atlanta", "GA", "30301"),
    )
    street_types = ("St", "Ave", "Blvd", "Dr", "Ln", "Way", "Rd", "Ct", "Pl", "Cir")
    company_suffixes = (
        "Inc", "LLC", "Corp", "Co", "Group", "Holdings", "Partners", "Enterprises",
    )
    company_words = (
        "Global", "National", "American", "United", "First", "Capital", "Prime",
        "Elite", "Premier", "Strategic", "Dynamic", "Advanced", "Summit", "Apex",
        "Pinnacle", "Vanguard", "Horizon", "Frontier", "Pacific", "Atlantic",
        "Heritage", "Legacy", "Venture", "Titan", "Stellar", "Quantum", "Nexus",
    )
    email_domains = (
        "gmail.com", "yahoo.com", "outlook.com", "hotmail.com", "aol.com",
        "icloud.com", "mail.com", "protonmail.com",
    )
    area_codes = (
        "212", "310", "312", "415", "617", "713", "202", "404", "305", "702",
        "213", "469", "972", "214", "818", "949", "619", "510",
    )

    def phone(self) -> str:
        area = self.rng.pick(self.area_codes)
        return f"+1 ({area}) {self.rng.randint(200, 999)}-{self.rng.randint(1000, 9999)}"

    def postal_code(self) -> str:
        base = int(self.rng.pick(self.cities).postal_code)
        zip_code = max(10000, min(99999, base + self.rng.randint(-100, 100)))
        return f"{zip_code:05d}"


class UKProvider(LocalizationProvider):
    country = "GB"
    country_name = "United Kingdom"
    timezone = "Europe/London"
    currency = "GBP"
    phone_prefix = "+44"

    first_names_male = (
        "Oliver", "George", "Harry", "Jack", "Noah", "Charlie", "Jacob",
        "Alfie", "Freddie", "Oscar", "Leo", "Archie", "Henry", "Thomas",
        "William", "James", "Joshua", "Arthur", "Edward", "Sebastian",
        "Samuel", "Isaac", "Harrison", "Finley", "Callum", "Jamie", "Simon",
    )
    first_names_female = (
        "Olivia", "Amelia", "Isla", "Ava", "Emily", "Sophia", "Grace", "Mia",
        "Poppy", "Ella", "Lily", "Evie", "Charlotte", "Freya", "Daisy",
        "Florence", "Alice", "Ruby", "Phoebe", "Matilda", "Imogen", "Harriet",
        "Eleanor", "Georgia", "Victoria", "Holly", "Molly",
    )
    last_names = (
        "Smith", "Jones", "Williams", "Taylor", "Brown", "Davies", "Evans",
        "Wilson", "Thomas", "Roberts", "Johnson", "Lewis", "Walker", "Wood",
        "Thompson", "White", "Watson", "Jackson", "Wright", "Green", "Harris",
        "Cooper", "King", "Clarke", "Morgan", "Hughes", "Edwards", "Hill",
        "Patel", "Bailey", "Parker", "Murphy",
    )
    cities = _cities(
        ("London", "Greater London", "EC1A 1BB"),
        ("Birmingham", "West Midlands", "B1 1AA"),
        ("Manchester", "Greater Manchester", "M1 1AA"),
        ("Leeds", "West Yorkshire", "LS1 1AA"),
        ("Glasgow", "Scotland", "G1 1AA"),
        ("Liverpool", "Merseyside", "L1 1AA"),
        ("Bristol", "Bristol", "BS1 1AA"),
        ("Sheffield", "South Yorkshire", "S1 1AA"),
        ("Edinburgh", "Scotland", "EH1 1AA"),
        ("Cardiff", "Wales", "CF1 1AA"),
        ("Belfast", "Northern Ireland", "BT1 1AA"),
        ("Nottingham", "Nottinghamshire", "NG1 1AA"),
        ("Newcastle", "Tyne and Wear", "NE1 1AA"),
        ("Brighton", "East Sussex", "BN1 1AA"),
        ("Cambridge", "Cambridgeshire", "CB1 1AA"),
        ("Oxford", "Oxfordshire", "OX1 1AA"),
    )
    street_types = (
        "Street", "Road", "Lane", "Avenue", "Drive", "Close", "Way", "Court",
        "Gardens", "Place", "Terrace", "Grove", "Crescent", "Square", "Mews",
    )
    street_names = (
        "High", "Church", "Mill", "Park", "Station", "Main", "London",
        "Victoria", "Green", "Manor", "King", "Queen", "North", "South",
    )
    company_suffixes = (
        "Ltd", "PLC", "LLP", "Group", "Holdings", "Partners", "UK", "International",
    )
    company_words = (
        "British", "Royal", "United", "Imperial", "National", "Crown",
        "Windsor", "Sterling", "Capital", "Premier", "Heritage", "Modern",
        "Apex", "Summit", "Thames", "Northern", "Southern", "Central",
        "Metropolitan", "Bridge",
    )
    email_domains = (
        "gmail.com", "yahoo.co.uk", "outlook.com", "hotmail.co.uk",
        "btinternet.com", "sky.com", "virginmedia.com", "icloud.com",
    )
    area_codes = (
        "20", "121", "131", "141", "151", "161", "113", "114", "115", "116",
        "117", "118", "191",
    )

    def phone(self) -> str:
        area = self.rng.pick(self.area_codes)
        return f"+44 {area} {self.rng.randint(1000, 9999)} {self.rng.randint(1000, 9999)}"

    def postal_code(self) -> str:
        letters = "ABCDEFGHIJKLMNOPQRSTUVWXYZ"
        outward = self.rng.pick(self.cities).postal_code.split(" ")[0]
        inward = f"{self.rng.randint(1, 9)}{self.rng.pick(letters)}{self.rng.pick(letters)}"
        return f"{outward} {inward}"

    def street_address(self) -> str:
        number = self.rng.randint(1, 200)
        return f"{number} {self.rng.pick(self.street_names)} {self.rng.pick(self.street_types)}"


class DEProvider(LocalizationProvider):
    country = "DE"
    country_name = "Germany"
    timezone = "Europe/Berlin"
    currency = "EUR"
    phone_prefix = "+49"

    first_names_male = (
        "Lukas", "Leon", "Finn", "Paul", "Jonas", "Felix", "Noah", "Elias",
        "Ben", "Luis", "Maximilian", "Julian", "Moritz", "Jan", "Tim",
        "Niklas", "Simon", "Philipp", "Fabian", "Sebastian", "Markus",
        "Stefan", "Andreas", "Tobias", "Florian", "Matthias", "Johannes",
    )
    first_names_female = (
        "Emma", "Mia", "Hannah", "Sofia", "Anna", "Lea", "Emilia", "Marie",
        "Lena", "Leonie", "Amelie", "Luisa", "Johanna", "Laura", "Clara",
        "Sophie", "Charlotte", "Paula", "Julia", "Katharina", "Sabine",
        "Petra", "Andrea", "Stefanie", "Claudia", "Franziska", "Daniela",
    )
    last_names = (
        "Mueller", "Schmidt", "Schneider", "Fischer", "Weber", "Meyer",
        "Wagner", "Becker", "Schulz", "Hoffmann", "Schaefer", "Koch", "Bauer",
        "Richter", "Klein", "Wolf", "Schroeder", "Neumann", "Schwarz",
        "Zimmermann", "Braun", "Krueger", "Hartmann", "Lange", "Werner",
        "Krause", "Lehmann", "Koenig", "Huber", "Kaiser", "Fuchs", "Vogel",
    )
    cities = _cities(
        ("Berlin", "Berlin", "10115"),
        ("Hamburg", "Hamburg", "20095"),
        ("Munich", "Bayern", "80331"),
        ("Cologne", "Nordrhein-Westfalen", "50667"),
        ("Frankfurt", "Hessen", "60311"),
        ("Stuttgart", "Baden-Wuerttemberg", "70173"),
        ("Duesseldorf", "Nordrhein-Westfalen", "40213"),
        ("Dortmund", "Nordrhein-Westfalen", "44135"),
        ("Leipzig", "Sachsen", "04109"),
        ("Bremen", "Bremen", "28195"),
        ("Dresden", "Sachsen", "01067"),
        ("Hanover", "Niedersachsen", "30159"),
        ("Nuremberg", "Bayern", "90402"),
        ("Bonn", "Nordrhein-Westfalen", "53111"),
        ("Muenster", "Nordrhein-Westfalen", "48143"),
    )
    street_types = ("strasse", "weg", "allee", "platz", "ring", "gasse", "damm")
    street_names = (
        "Haupt", "Bahnhof", "Kirch", "Schul", "Markt", "Berg", "Wald",
        "Garten", "Linden", "Eichen", "Birken", "Park", "Schloss", "Bach",
    )
    company_suffixes = ("GmbH", "AG", "KG", "OHG", "e.K.", "GmbH & Co. KG", "SE", "UG")
    company_words = (
        "Deutsche", "Erste", "Europa", "Global", "Inter", "Multi", "Nord",
        "Sued", "West", "Zentral", "Technik", "Handel", "Industrie",
        "Beratung", "Service", "System", "Consulting", "Engineering", "Finanz",
        "Medien", "Digital", "Software", "Data", "Netz",
    )
    email_domains = (
        "gmail.com", "gmx.de", "web.de", "outlook.de", "t-online.de",
        "freenet.de", "posteo.de", "mail.de",
    )
    area_codes = (
        "30", "40", "69", "89", "221", "211", "711", "341", "351", "421",
        "511", "231", "201", "911", "228", "251",
    )

    def phone(self) -> str:
        area = self.rng.pick(self.area_codes)
        digits = "".join(str(self.rng.randint(0, 9)) for _ in range(self.rng.randint(6, 8)))
        return f"+49 {area} {digits}"

    def postal_code(self) -> str:
        base = int(self.rng.pick(self.cities).postal_code)
        zip_code = max(1000, min(99999, base + self.rng.randint(-500, 500)))
        return f"{zip_code:05d}"

    def street_address(self) -> str:
        street = f"{self.rng.pick(self.street_names)}{self.rng.pick(self.street_types)}"
        return f"{street} {self.rng.randint(1, 150)}"


_PROVIDERS: dict[str, type[LocalizationProvider]] = {
    "US": USProvider,
    "GB": UKProvider,
    "UK": UKProvider,
    "DE": DEProvider,
}


def get_provider(country: str, rng: SeededRNG) -> LocalizationProvider:
    """Provider for a country code; unsupported countries fall back to US."""
    cls = _PROVIDERS.get(country.upper(), USProvider)
    return cls(rng)


def has_provider(country: str) -> bool:
    return country.upper() in _PROVIDERS


def supported_countries() -> list[str]:
    return [c for c in _PROVIDERS if c != "UK"]
