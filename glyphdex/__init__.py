version = 'glyphdex 0.4.0'
version_short = version.split()[-1]
