"""
Module de gestion de la configuration pour kdsingle.
Centralise le chargement et l'accès à la configuration YAML.
"""

import copy
import os
import yaml

# Chemin par défaut du fichier de configuration
DEFAULT_CONFIG_PATH = os.path.join(os.path.dirname(os.path.dirname(os.path.dirname(os.path.abspath(__file__)))), "config.yaml")

# Configuration par défaut
DEFAULT_CONFIG = {
    "general": {
        "verbose": False
    },
    "build_tree": {
        "leaf_size": 12,
        "reorder": False,
        "max_depth": 128,            # Au-delà, le nœud devient une feuille
        "n_jobs": 1,                 # Nombre de workers joblib pour la construction
        "parallel_threshold": 50000, # Taille minimale d'un sous-arbre construit en parallèle
        "rebuild_threshold": 2.0,    # add_points reconstruit si la taille dépasse size_at_build * seuil
    },
    "search": {
        "checks": -1,                # -1 = recherche exacte
        "eps": 0.0,
        "sorted": True,
        "max_neighbors": -1,
        "cores": 1,
    },
}


class ConfigManager:
    """Gestionnaire de configuration pour kdsingle."""

    def __init__(self, config_path=None):
        """
        Initialise le gestionnaire de configuration.

        Paramètres :
            config_path: Chemin vers le fichier de configuration YAML.
                         Si None, utilise le chemin par défaut.
        """
        self.config_path = config_path or DEFAULT_CONFIG_PATH
        self.config = self.load_config()

    def load_config(self):
        """
        Charge la configuration depuis le fichier YAML.

        Retourne :
            Dict: La configuration chargée, ou la configuration par défaut en cas d'erreur.
        """
        if not os.path.exists(self.config_path):
            return copy.deepcopy(DEFAULT_CONFIG)

        try:
            with open(self.config_path, "r") as f:
                config = yaml.safe_load(f) or {}

            # Vérifier et compléter la configuration
            self._ensure_complete_config(config)

            return config
        except (OSError, yaml.YAMLError) as e:
            print(f"⚠️ Erreur lors du chargement de la configuration: {str(e)}")
            print(f"⚠️ Utilisation des paramètres par défaut")
            return copy.deepcopy(DEFAULT_CONFIG)

    def _ensure_complete_config(self, config):
        """
        S'assure que la configuration contient toutes les sections nécessaires.
        Complète avec les valeurs par défaut si nécessaire.

        Paramètres :
            config: Configuration à vérifier et compléter.
        """
        for section, default_values in DEFAULT_CONFIG.items():
            if not isinstance(config.get(section), dict):
                config[section] = default_values.copy()
            else:
                for key, value in default_values.items():
                    if key not in config[section]:
                        config[section][key] = value

    def get_section(self, section):
        """
        Récupère une section complète de la configuration.

        Paramètres :
            section: Nom de la section à récupérer.

        Retourne :
            Dict: La section demandée, ou un dictionnaire vide si la section n'existe pas.
        """
        return self.config.get(section, {})

    def get(self, section, key, default=None):
        """
        Récupère une valeur spécifique de la configuration.

        Paramètres :
            section: La section contenant la clé.
            key: La clé à récupérer.
            default: Valeur par défaut si la clé n'existe pas.

        Retourne :
            La valeur associée à la clé, ou la valeur par défaut si la clé n'existe pas.
        """
        section_data = self.get_section(section)
        return section_data.get(key, default)

    def reload(self, config_path=None):
        """
        Recharge la configuration depuis un nouveau fichier.

        Paramètres :
            config_path: Nouveau chemin de configuration. Si None, utilise le chemin actuel.
        """
        if config_path:
            self.config_path = config_path
        self.config = self.load_config()

    def __str__(self):
        """Représentation de la configuration pour le débogage."""
        return f"Configuration chargée depuis: {self.config_path}"

# Fonction utilitaire pour charger une configuration
def load_config(config_path=None):
    """
    Fonction utilitaire pour charger rapidement une configuration.

    Paramètres :
        config_path: Chemin vers le fichier de configuration YAML.
                     Si None, utilise le chemin par défaut.

    Retourne :
        ConfigManager: Instance du gestionnaire de configuration.
    """
    return ConfigManager(config_path)
