from enum import IntEnum, IntFlag

class IntEnum2(IntEnum):
    def __str__(self):
        return self.name

    def __repr__(self):
        return self.__str__()

class IntFlag2(IntFlag):
    def __str__(self):
        if self.name:
            return self.name

        # Combined flags have no single name on older interpreters
        names = [m.name for m in type(self) if m.value and (self.value & m.value) == m.value]
        rest = self.value & ~sum(m.value for m in type(self) if m.name in names)
        if rest:
            names.append(f'0x{rest:X}')

        return '|'.join(names) if names else '0'

    def __repr__(self):
        return self.__str__()
