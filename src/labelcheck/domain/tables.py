"""Static vocabularies used by the deterministic rule engine.

Everything here is plain data. The engine receives a RuleTables instance at
construction time, so tests can swap in smaller tables.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import FrozenSet, Mapping, Tuple


def _frozen(d: dict) -> Mapping:
    return MappingProxyType(dict(d))


# Country of sale (English name, local name, ISO alpha-2) -> accepted languages.
_COUNTRY_LANGUAGES = {
    "austria": ("de",), "österreich": ("de",), "at": ("de",),
    "belgium": ("nl", "fr", "de"), "belgique": ("nl", "fr", "de"), "belgië": ("nl", "fr", "de"), "be": ("nl", "fr", "de"),
    "bulgaria": ("bg",), "bg": ("bg",),
    "croatia": ("hr",), "hrvatska": ("hr",), "hr": ("hr",),
    "cyprus": ("el", "tr"), "cy": ("el", "tr"),
    "czech republic": ("cs",), "czechia": ("cs",), "cz": ("cs",),
    "denmark": ("da",), "danmark": ("da",), "dk": ("da",),
    "estonia": ("et",), "ee": ("et",),
    "finland": ("fi", "sv"), "suomi": ("fi", "sv"), "fi": ("fi", "sv"),
    "france": ("fr",), "fr": ("fr",),
    "germany": ("de",), "deutschland": ("de",), "de": ("de",),
    "greece": ("el",), "gr": ("el",),
    "hungary": ("hu",), "magyarország": ("hu",), "hu": ("hu",),
    "ireland": ("en", "ga"), "ie": ("en", "ga"),
    "italy": ("it",), "italia": ("it",), "it": ("it",),
    "latvia": ("lv",), "lv": ("lv",),
    "lithuania": ("lt",), "lt": ("lt",),
    "luxembourg": ("fr", "de", "lb"), "lu": ("fr", "de", "lb"),
    "malta": ("mt", "en"), "mt": ("mt", "en"),
    "netherlands": ("nl",), "the netherlands": ("nl",), "nederland": ("nl",), "nl": ("nl",),
    "poland": ("pl",), "polska": ("pl",), "pl": ("pl",),
    "portugal": ("pt",), "pt": ("pt",),
    "romania": ("ro",), "românia": ("ro",), "ro": ("ro",),
    "slovakia": ("sk",), "sk": ("sk",),
    "slovenia": ("sl",), "si": ("sl",),
    "spain": ("es",), "españa": ("es",), "es": ("es",),
    "sweden": ("sv",), "sverige": ("sv",), "se": ("sv",),
    "switzerland": ("de", "fr", "it"), "schweiz": ("de", "fr", "it"), "suisse": ("de", "fr", "it"), "ch": ("de", "fr", "it"),
    "united kingdom": ("en",), "uk": ("en",), "gb": ("en",), "great britain": ("en",),
    "norway": ("no", "nb", "nn"), "no": ("no", "nb", "nn"),
}

# Free-form language names -> ISO 639-1 codes.
_LANGUAGE_ALIASES = {
    "english": "en", "inglese": "en", "englisch": "en", "anglais": "en",
    "italian": "it", "italiano": "it", "italienisch": "it", "italien": "it",
    "german": "de", "deutsch": "de", "tedesco": "de", "allemand": "de",
    "french": "fr", "français": "fr", "francais": "fr", "francese": "fr", "französisch": "fr",
    "spanish": "es", "español": "es", "espanol": "es", "spagnolo": "es", "castellano": "es",
    "portuguese": "pt", "português": "pt", "portugues": "pt",
    "dutch": "nl", "nederlands": "nl", "flemish": "nl", "vlaams": "nl",
    "polish": "pl", "polski": "pl",
    "romanian": "ro", "română": "ro",
    "greek": "el", "ελληνικά": "el",
    "czech": "cs", "čeština": "cs",
    "slovak": "sk", "slovenčina": "sk",
    "slovenian": "sl", "slovenščina": "sl",
    "croatian": "hr", "hrvatski": "hr",
    "hungarian": "hu", "magyar": "hu",
    "bulgarian": "bg",
    "swedish": "sv", "svenska": "sv",
    "danish": "da", "dansk": "da",
    "finnish": "fi", "suomi": "fi",
    "estonian": "et", "eesti": "et",
    "latvian": "lv", "latviešu": "lv",
    "lithuanian": "lt", "lietuvių": "lt",
    "maltese": "mt", "malti": "mt",
    "irish": "ga", "gaeilge": "ga",
    "norwegian": "no", "norsk": "no",
    "turkish": "tr", "türkçe": "tr",
    "luxembourgish": "lb",
}

# Localized label header words whose presence suggests a label language.
_LANGUAGE_CUES = {
    "en": ("ingredients", "best before", "use by", "nutrition", "store in"),
    "it": ("ingredienti", "da consumarsi", "valori nutrizionali", "conservare"),
    "de": ("zutaten", "mindestens haltbar", "nährwert", "zu verbrauchen bis"),
    "fr": ("ingrédients", "à consommer", "valeurs nutritionnelles", "conserver"),
    "es": ("ingredientes", "consumir preferentemente", "información nutricional"),
    "pt": ("ingredientes", "consumir de preferência", "declaração nutricional"),
    "nl": ("ingrediënten", "ten minste houdbaar", "voedingswaarde"),
    "pl": ("składniki", "najlepiej spożyć", "wartość odżywcza"),
    "cs": ("složení", "minimální trvanlivost"),
    "sv": ("ingredienser", "bäst före", "näringsvärde"),
    "da": ("ingredienser", "bedst før", "næringsindhold"),
    "fi": ("ainesosat", "parasta ennen", "ravintosisältö"),
    "ro": ("ingrediente", "a se consuma", "declarație nutrițională"),
    "hu": ("összetevők", "minőségét megőrzi"),
    "hr": ("sastojci", "najbolje upotrijebiti"),
    "el": ("συστατικά", "ανάλωση κατά προτίμηση"),
}

_NAME_STOPWORDS = frozenset({
    "the", "a", "an", "and", "of", "with", "in", "for", "&",
    "il", "lo", "la", "i", "gli", "le", "di", "del", "della", "con", "e",
    "der", "die", "das", "und", "mit",
    "le", "les", "de", "du", "des", "et", "avec", "au", "aux",
    "el", "los", "las", "y", "con",
    "organic", "bio", "premium", "classic", "original", "natural", "fresh",
    "extra", "fine", "traditional", "artisan", "homemade", "new", "mini",
})

_INGREDIENT_HEADERS = (
    "ingredients", "ingredient list", "ingredienti", "zutaten", "ingrédients", "ingredients:",
    "ingredientes", "ingrediënten", "ingredienser", "ainesosat", "składniki", "složení",
    "sastojci", "összetevők", "ingrediente", "συστατικά",
)

# Annex II allergens with common localized names (lower-case, prefix-matched).
_ALLERGEN_TERMS = (
    "gluten", "wheat", "barley", "rye", "oat", "spelt", "kamut",
    "frumento", "grano", "orzo", "segale", "avena", "farro", "weizen", "gerste", "roggen", "hafer", "dinkel",
    "blé", "orge", "seigle", "trigo", "cebada", "centeno",
    "crustacean", "shrimp", "prawn", "crab", "lobster", "crostacei", "gamberi", "krebstiere",
    "egg", "uova", "uovo", "eier", "œuf", "oeuf", "huevo",
    "fish", "pesce", "fisch", "poisson", "pescado", "anchov", "acciughe", "tuna", "tonno",
    "peanut", "arachid", "erdnuss", "cacahuète", "cacahuete", "cacahuate",
    "soy", "soya", "soja", "soia",
    "milk", "latte", "milch", "lait", "leche", "butter", "burro", "cream", "panna", "sahne", "crème",
    "cheese", "formaggio", "käse", "fromage", "queso", "whey", "siero", "lactose", "lattosio", "laktose",
    "nuts", "tree nut", "almond", "hazelnut", "walnut", "cashew", "pecan", "brazil nut", "pistachio", "macadamia",
    "frutta a guscio", "mandorl", "nocciol", "noci", "anacardi", "pistacchi", "mandel", "haselnuss",
    "walnuss", "pistazie", "amande", "noisette", "noix", "pistache", "almendra", "avellana", "nuez",
    "celery", "sedano", "sellerie", "céleri", "apio",
    "mustard", "senape", "senf", "moutarde", "mostaza",
    "sesame", "sesamo", "sesam", "sésame",
    "sulphite", "sulfite", "sulphur dioxide", "solfiti", "anidride solforosa", "sulfit", "schwefeldioxid",
    "lupin", "lupino", "lupine",
    "mollusc", "mollusk", "molluschi", "weichtiere", "mollusques", "moluscos", "mussel", "oyster", "squid",
)

_DATE_TERMS = (
    "best before", "use by", "bbe", "best by", "expiry", "exp.",
    "da consumarsi preferibilmente entro", "da consumarsi entro", "consumare entro", "scadenza",
    "mindestens haltbar bis", "zu verbrauchen bis", "mhd",
    "à consommer de préférence avant", "à consommer jusqu", "a consommer de preference avant", "dluo", "dlc",
    "consumir preferentemente antes", "fecha de caducidad", "consumir antes",
    "consumir de preferência antes", "ten minste houdbaar tot", "te gebruiken tot",
    "najlepiej spożyć przed", "bäst före", "bedst før", "parasta ennen",
)

_STORAGE_TERMS = (
    "store in", "store at", "keep in", "keep refrigerated", "refrigerate", "once opened", "after opening",
    "keep away from", "storage", "conservare", "conservazione", "dopo l'apertura", "una volta aperto",
    "kühl und trocken", "lagern", "nach dem öffnen", "conserver", "après ouverture",
    "conservar", "una vez abierto", "bewaren", "na opening", "przechowywać", "förvaras", "opbevares",
    "säilytä", "a se păstra",
)

_NUTRITION_TERMS = (
    "nutrition", "nutritional", "nutrition declaration", "typical values", "valori nutrizionali",
    "dichiarazione nutrizionale", "nährwert", "nährwertangaben", "valeurs nutritionnelles",
    "déclaration nutritionnelle", "información nutricional", "valor energético", "voedingswaarde",
    "wartość odżywcza", "näringsvärde", "energy", "energia", "energie", "énergie", "kcal", "kj",
)

_CLAIM_TERMS = (
    "high in protein", "high protein", "source of protein", "source of fibre", "source of fiber",
    "high fibre", "high fiber", "rich in", "low fat", "fat free", "fat-free", "low sugar", "sugar free",
    "sugar-free", "no added sugar", "no added sugars", "reduced sugar", "reduced fat",
    "low salt", "low sodium", "salt free", "energy free", "low calorie", "boosts", "supports",
    "contributes to", "immune", "healthy", "superfood", "detox",
    "senza zuccheri aggiunti", "ricco di", "fonte di", "alto contenuto", "ridotto contenuto",
    "ohne zuckerzusatz", "reich an", "quelle von", "sans sucres ajoutés", "riche en", "source de",
    "sin azúcares añadidos", "rico en", "fuente de",
)

_COMPANY_FORMS = (
    "ltd", "limited", "plc", "llc", "inc", "srl", "s.r.l.", "spa", "s.p.a.", "snc", "sas", "s.a.s.",
    "gmbh", "ag", "ohg", "ug", "sarl", "s.a.r.l.", "sa", "s.a.", "bv", "b.v.", "nv", "n.v.",
    "sl", "s.l.", "lda", "oy", "ab", "a/s", "aps", "kft", "sp. z o.o.", "s.r.o.", "d.o.o.", "eood", "ooo",
)

_STREET_TERMS = (
    "via", "viale", "piazza", "corso", "largo", "strada", "loc.", "località",
    "straße", "strasse", "str.", "platz", "weg", "allee", "gasse",
    "rue", "avenue", "boulevard", "bd", "chemin",
    "calle", "avenida", "avda", "plaza", "rua", "travessa",
    "straat", "laan", "plein", "gracht",
    "street", "st.", "road", "rd", "industrial estate",
    "ul.", "ulica", "utca", "gatan", "vej",
)

# Everyday words ("dry place", "on the way") that only count next to a house number.
_NUMBERED_STREET_TERMS = ("place", "route", "way", "park", "drive", "lane", "court", "square")

# Halal pre-audit vocabularies.
_PORK_TERMS = (
    "pork", "pig", "swine", "lard", "bacon", "ham", "prosciutto", "pancetta", "guanciale", "salame",
    "maiale", "suino", "strutto", "schwein", "speck", "schmalz", "porc", "saindoux", "lardons",
    "cerdo", "manteca de cerdo", "varken",
)
_ALCOHOL_TERMS = (
    "alcohol", "ethanol", "ethyl alcohol", "wine", "beer", "rum", "brandy", "liqueur", "whisky", "vodka",
    "alcol", "vino", "birra", "liquore", "marsala", "alkohol", "wein", "bier", "alcool", "vin", "bière",
    "cerveza", "licor",
)
_GELATIN_TERMS = ("gelatin", "gelatine", "gelatina", "e441", "e 441", "colla di pesce")
_HALAL_QUALIFIERS = ("halal", "bovine halal", "fish gelatin", "fish gelatine", "gelatina di pesce", "pesce")
_DOUBTFUL_ADDITIVES = (
    "e120", "e 120", "carmine", "cochineal", "carminio", "cocciniglia", "e542", "e 542", "e904", "e 904",
    "shellac", "e920", "e 920", "l-cysteine", "l-cisteina", "e471", "e 471", "mono- and diglycerides",
    "mono e digliceridi", "rennet", "caglio",
)


@dataclass(frozen=True)
class RuleTables:
    """Immutable lookup tables supplied to the enforcement engine."""

    country_languages: Mapping[str, Tuple[str, ...]] = field(default_factory=lambda: _frozen(_COUNTRY_LANGUAGES))
    language_aliases: Mapping[str, str] = field(default_factory=lambda: _frozen(_LANGUAGE_ALIASES))
    language_cues: Mapping[str, Tuple[str, ...]] = field(default_factory=lambda: _frozen(_LANGUAGE_CUES))
    name_stopwords: FrozenSet[str] = _NAME_STOPWORDS
    ingredient_headers: Tuple[str, ...] = _INGREDIENT_HEADERS
    allergen_terms: Tuple[str, ...] = _ALLERGEN_TERMS
    date_terms: Tuple[str, ...] = _DATE_TERMS
    storage_terms: Tuple[str, ...] = _STORAGE_TERMS
    nutrition_terms: Tuple[str, ...] = _NUTRITION_TERMS
    claim_terms: Tuple[str, ...] = _CLAIM_TERMS
    company_forms: Tuple[str, ...] = _COMPANY_FORMS
    street_terms: Tuple[str, ...] = _STREET_TERMS
    numbered_street_terms: Tuple[str, ...] = _NUMBERED_STREET_TERMS
    pork_terms: Tuple[str, ...] = _PORK_TERMS
    alcohol_terms: Tuple[str, ...] = _ALCOHOL_TERMS
    gelatin_terms: Tuple[str, ...] = _GELATIN_TERMS
    halal_qualifiers: Tuple[str, ...] = _HALAL_QUALIFIERS
    doubtful_additives: Tuple[str, ...] = _DOUBTFUL_ADDITIVES


DEFAULT_TABLES = RuleTables()
