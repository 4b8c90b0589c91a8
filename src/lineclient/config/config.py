import os
import platform

from configobj import ConfigObj, ConfigObjError, Section
from validate import Validator

# The default extension for configuration files
config_extension = '.cfg'

# The directory holding the configuration shipped with the package
package_config_dir = os.path.dirname(__file__)


def config_flavor(name, flavor=None):
    configname = name if not flavor else name + '.' + flavor
    return configname


def config_filename(name, directory=None):
    """
    Determines the location of a config file in the given directory.
    """
    config_file = os.path.join(directory, name + config_extension)
    return config_file


def load_config_file_base(file, must_exist=True):
    """
    Loads a configuration file
    :param file:        The configuration file to load
    :param must_exist:  when True, the file must exist or an exception is thrown.
    :return: The ConfigObj instance for the file.
    """
    try:
        return ConfigObj(file, interpolation='Template', file_error=must_exist) \
            if must_exist or os.path.exists(file) else ConfigObj()
    except ConfigObjError as e:
        raise type(e)(str(e) + ' at ' + file)


def load_schema(file):
    """
    Loads a validation schema. Checks such as integer(min=1, max=10) are kept whole rather than read as lists.
    """
    try:
        return ConfigObj(file, _inspec=True) if os.path.exists(file) else ConfigObj(_inspec=True)
    except ConfigObjError as e:
        raise type(e)(str(e) + " at " + file)


def config_flavor_file(name, directory, subpart=None) -> ConfigObj:
    """
    Loads a specialization of a config file. The configuration file is expected to be named
    after the base, followed by a period and then the specialization, if the specialization is given,
    otherwise just the base name.
    :param name:    The name of the base configuration
    :param subpart: The name of the specialization.
    :return: The ConfigObj for the configuration file, empty when there is no such file.
    """
    configname = config_flavor(name, subpart)
    file = config_filename(configname, directory)
    return load_config_file_base(file, False)


def map_os_name(name):
    """
    >>> map_os_name('Windows')
    'windows'
    >>> map_os_name("Darwin")
    'osx'
    """
    name = name.lower()
    if name == 'darwin':
        name = 'osx'
    return name


def os_name():
    return map_os_name(platform.system())


def load_config(name='lineclient', directory=package_config_dir):
    """
        Loads all the configuration files that relate to the given name.
        Configurations are merged in this order, later ones overriding earlier ones:
        - the default specialization
        - the platform specialization
        - the user override in the home directory
        - the base configuration
        The merged configuration is then validated against the "schema" specialization,
        which also supplies values missing from all of the files.
    :param directory: the location of the configuration files
    :raises ConfigObjError: when the configuration fails validation
    """
    local_config = config_flavor_file(name, directory)
    default_config = config_flavor_file(name, directory, 'default')
    platform_config = config_flavor_file(name, directory, os_name())
    user_config = load_config_file_base(os.path.expanduser(
        '~/' + name + config_extension), must_exist=False)
    config = ConfigObj()
    config.merge(default_config)
    config.merge(platform_config)
    config.merge(user_config)
    config.merge(local_config)

    config.configspec = load_schema(config_filename(config_flavor(name, 'schema'), directory))
    validator = Validator()
    result = config.validate(validator)
    if result is not True:
        raise ConfigObjError("the config file %s failed validation %s" % (name, result))
    return config


def fetch_conf_path(conf: Section, path):
    """
    Retrieves the named configuration section
    :param conf:        The root configuration
    :param path:        An iterable that lists the names of the sections to descend into
    :return: The configuration section identified by the path, or None
    """
    for p in path:    # lookup specific section
        conf = conf.get(p, None)
        if conf is None:
            return
    return conf


def apply_conf(conf: Section, target):
    """
    Applies the attributes contained in a configuration object to a target object.
    It does this by iterating over the items in the configuration and setting any attributes with the same name.
    """
    for k, v in conf.items():
        if hasattr(target, k):
            setattr(target, k, v)


class ClientSettings:
    """
    How to reach one server and how to keep the connection alive.
    An empty service selects the protocol's default port.
    """

    def __init__(self):
        self.address = 'localhost'
        self.service = None
        self.password = ''
        self.enabled = True
        self.ping_interval = 300
        self.retry_period = 5
        self.retry_max_period = 5

    def __repr__(self):
        return "ClientSettings(%s:%s)" % (self.address, self.service)


def client_settings(section_name, config=None) -> ClientSettings:
    """
    Builds the settings for a client from a configuration section.
    :param section_name: the section, such as 'mpd' or 'nut'. Nested sections are separated with '.'
    :param config: the loaded configuration. The package configuration is loaded when not given.
    :raises ConfigObjError: when the section does not exist
    """
    if config is None:
        config = load_config()
    conf = fetch_conf_path(config, section_name.split('.'))
    if conf is None:
        raise ConfigObjError("no configuration section %s" % section_name)
    settings = ClientSettings()
    apply_conf(conf, settings)
    return settings
